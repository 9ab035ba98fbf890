"""
Graph - node registry and edge table with a fluent construction API.

    graph = (
        Graph("qa")
        .add_node("classify", classify)
        .add_node("retrieve", retrieve)
        .add_node("answer", answer, max_retries=1, timeout=25.0)
        .add_edge(START, "classify")
        .add_conditional_edge(
            "classify",
            lambda s: "retrieve" if s["route"] == "rag" else "answer",
            targets=["retrieve", "answer"],
        )
        .add_edge("retrieve", "answer")
        .add_edge("answer", END)
    )

References are validated when an edge is registered, not when the run
reaches it: an edge must name nodes that already exist. Decisions made
by conditional edges at run time are checked against the registry by
``next_nodes``.

The graph is read-only once a run starts; runs never mutate it, so one
graph may back several concurrent runs.
"""

import logging
from collections.abc import Mapping
from typing import Any

from wavegraph.errors import DuplicateNodeError, UnknownNodeError
from wavegraph.graph.edge import END, START, DecideFn, EdgeCondition, EdgeSpec
from wavegraph.graph.node import NodeSpec, Operation

logger = logging.getLogger(__name__)


class Graph:
    """Registry of nodes plus the edges between them."""

    def __init__(self, graph_id: str = "graph", description: str = ""):
        self.id = graph_id
        self.description = description
        self._nodes: dict[str, NodeSpec] = {}
        self._edges: list[EdgeSpec] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(
        self,
        node: NodeSpec | str,
        operation: Operation | None = None,
        **policy: Any,
    ) -> "Graph":
        """
        Register a node.

        Accepts a ready ``NodeSpec`` or a name plus operation, with policy
        fields (max_retries, timeout, description, input_keys, output_keys)
        as keyword arguments.

        Raises:
            DuplicateNodeError: a node with this name already exists
        """
        if isinstance(node, NodeSpec):
            if operation is not None or policy:
                raise TypeError("pass either a NodeSpec or a name with an operation, not both")
            spec = node
        else:
            if operation is None:
                raise TypeError(f"node '{node}' needs an operation")
            spec = NodeSpec(name=node, operation=operation, **policy)

        if spec.name in self._nodes:
            raise DuplicateNodeError(spec.name)
        self._nodes[spec.name] = spec
        logger.debug(f"Registered node '{spec.name}'")
        return self

    def add_edge(self, source: str, target: str, description: str = "") -> "Graph":
        """
        Register a static edge ``source → target``.

        Raises:
            UnknownNodeError: source or target is not registered
        """
        self._require_source(source)
        self._require_target(target, f"target of edge from '{source}'")
        self._edges.append(
            EdgeSpec(
                source=source,
                target=target,
                condition=EdgeCondition.ALWAYS,
                description=description,
            )
        )
        return self

    def add_conditional_edge(
        self,
        source: str,
        decide: DecideFn,
        targets: list[str] | tuple[str, ...] | None = None,
        description: str = "",
    ) -> "Graph":
        """
        Register a conditional edge whose targets are computed from state.

        ``decide`` must be a pure function: it runs once per superstep the
        source completes in, and its result may name one node, several
        nodes (fan-out), END, or None.

        When ``targets`` is given each name is validated now, and decisions
        outside the declared set fail the run.

        Raises:
            UnknownNodeError: source or a declared target is not registered
        """
        self._require_source(source)
        if targets is not None:
            for target in targets:
                self._require_target(target, f"declared target of conditional edge from '{source}'")
        self._edges.append(
            EdgeSpec(
                source=source,
                condition=EdgeCondition.CONDITIONAL,
                decide=decide,
                targets=tuple(targets) if targets is not None else None,
                description=description,
            )
        )
        return self

    def _require_source(self, source: str) -> None:
        if source == START:
            return
        if source not in self._nodes:
            raise UnknownNodeError(source, "edge source")

    def _require_target(self, target: str, context: str) -> None:
        if target == END:
            return
        if target not in self._nodes:
            raise UnknownNodeError(target, context)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> list[NodeSpec]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[EdgeSpec]:
        return list(self._edges)

    def node_names(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, name: str) -> NodeSpec | None:
        """Get a node by name."""
        return self._nodes.get(name)

    def get_outgoing_edges(self, name: str) -> list[EdgeSpec]:
        """Get all edges leaving a node, in registration order."""
        return [e for e in self._edges if e.source == name]

    def get_incoming_edges(self, name: str) -> list[EdgeSpec]:
        """Get all edges whose known targets include a node."""
        return [e for e in self._edges if name in e.possible_targets]

    # ------------------------------------------------------------------
    # Frontier computation
    # ------------------------------------------------------------------

    def next_nodes(self, source: str, state: Mapping[str, Any]) -> list[str]:
        """
        Compute the successors of ``source`` for the given state.

        Every edge leaving ``source`` is evaluated: static edges always
        contribute their target, conditional edges contribute whatever
        their decide function returns. The result is the deduplicated
        union in first-seen order, with END removed.

        Raises:
            UnknownNodeError: a decision named an unregistered node
            EdgeDecisionError: a decide function failed
        """
        result: list[str] = []
        seen: set[str] = set()
        for edge in self.get_outgoing_edges(source):
            for name in edge.resolve(state):
                if name == END or name in seen:
                    continue
                if name not in self._nodes:
                    raise UnknownNodeError(name, f"selected by edge from '{source}'")
                seen.add(name)
                result.append(name)
        return result

    # ------------------------------------------------------------------
    # Structural analysis
    # ------------------------------------------------------------------

    def detect_fan_out_nodes(self) -> dict[str, list[str]]:
        """
        Detect nodes whose statically known successors number more than one.

        Returns:
            Dict mapping source name -> list of successor names
        """
        fan_outs: dict[str, list[str]] = {}
        for source in [START, *self._nodes]:
            targets: list[str] = []
            for edge in self.get_outgoing_edges(source):
                for t in edge.possible_targets:
                    if t != END and t not in targets:
                        targets.append(t)
            if len(targets) > 1:
                fan_outs[source] = targets
        return fan_outs

    def detect_fan_in_nodes(self) -> dict[str, list[str]]:
        """
        Detect nodes reachable from more than one source (convergence points).

        Returns:
            Dict mapping target name -> list of source names
        """
        fan_ins: dict[str, list[str]] = {}
        for name in self._nodes:
            sources = []
            for edge in self.get_incoming_edges(name):
                if edge.source not in sources:
                    sources.append(edge.source)
            if len(sources) > 1:
                fan_ins[name] = sources
        return fan_ins

    def _compute_reachable(self, start: str) -> set[str]:
        reachable: set[str] = set()
        to_visit = [start]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in self.get_outgoing_edges(current):
                to_visit.extend(t for t in edge.possible_targets if t != END)
        return reachable

    def validate(self, start_node: str = START) -> list[str]:
        """
        Check the graph structure from ``start_node``.

        Returns a list of problems; an empty list means the graph looks
        sound. Conditional edges without declared targets make
        reachability unknowable, so unreachable-node checks are skipped
        when one is present.
        """
        errors: list[str] = []

        if start_node != START and start_node not in self._nodes:
            errors.append(f"Start node '{start_node}' not found")
            return errors
        if start_node == START and not self.get_outgoing_edges(START):
            errors.append("No edges leave START")

        opaque = [
            e.source
            for e in self._edges
            if e.condition == EdgeCondition.CONDITIONAL and e.targets is None
        ]
        if not opaque:
            reachable = self._compute_reachable(start_node)
            for name in self._nodes:
                if name not in reachable:
                    errors.append(f"Node '{name}' is unreachable from '{start_node}'")

        # Sibling nodes writing the same key merge in unspecified order
        for source, targets in self.detect_fan_out_nodes().items():
            seen_keys: dict[str, str] = {}
            for name in targets:
                for key in self._nodes[name].output_keys:
                    if key in seen_keys:
                        errors.append(
                            f"Fan-out from '{source}': nodes '{seen_keys[key]}' and "
                            f"'{name}' both write to '{key}'"
                        )
                    else:
                        seen_keys[key] = name

        return errors

    async def run(
        self,
        initial_state: Mapping[str, Any] | None = None,
        start_node: str = START,
        **executor_kwargs: Any,
    ) -> dict[str, Any]:
        """Shortcut for ``GraphExecutor(self, ...).run(initial_state, start_node)``."""
        from wavegraph.graph.executor import GraphExecutor

        executor = GraphExecutor(self, **executor_kwargs)
        return await executor.run(initial_state, start_node)
