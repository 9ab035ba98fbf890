"""
Edge Protocol - How nodes connect in a graph.

Edges define which nodes run in the superstep after their source node
completes. Two kinds exist:

- always: Always traverse to a fixed target after the source completes
- conditional: Ask a ``decide(state)`` function for one or more targets,
  computed from the state as merged at the end of the source's superstep

Several edges may leave the same source. Every one of them is evaluated,
and the union of their targets becomes part of the next frontier. This is
how fan-out is expressed.

Two sentinel names are reserved:

- START: may be used as an edge source; a run started at START begins
  with START's successors without spending a step
- END: may be used as an edge target or returned by ``decide``; it is
  never scheduled and marks the branch as finished
"""

from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from wavegraph.errors import EdgeDecisionError, UnknownNodeError

START = "__start__"
END = "__end__"

SENTINELS = frozenset({START, END})

DecideFn = Callable[[Mapping[str, Any]], str | Iterable[str] | None]


class EdgeCondition(StrEnum):
    """When an edge should be traversed."""

    ALWAYS = "always"  # Always after source completes
    CONDITIONAL = "conditional"  # Targets computed from state


class EdgeSpec(BaseModel):
    """
    Specification for an edge leaving a node.

    Examples:
        # Static edge
        EdgeSpec(source="retrieve", target="answer")

        # Conditional routing based on state
        EdgeSpec(
            source="classify",
            condition=EdgeCondition.CONDITIONAL,
            decide=lambda state: "retrieve" if state["route"] == "rag" else "answer",
            targets=("retrieve", "answer"),
        )
    """

    source: str = Field(description="Source node name (or START)")
    condition: EdgeCondition = EdgeCondition.ALWAYS
    target: str | None = Field(default=None, description="Target node name for ALWAYS edges")
    decide: DecideFn | None = Field(
        default=None,
        description="Pure function of state returning one or more target names",
    )
    targets: tuple[str, ...] | None = Field(
        default=None,
        description="Declared set of names a CONDITIONAL edge may return",
    )
    description: str = ""

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @model_validator(mode="after")
    def _check_shape(self) -> "EdgeSpec":
        if self.source == END:
            raise ValueError("END cannot be an edge source")
        if self.condition == EdgeCondition.ALWAYS:
            if not self.target:
                raise ValueError("ALWAYS edges require a target")
            if self.decide is not None:
                raise ValueError("ALWAYS edges cannot have a decide function")
            if self.target == START:
                raise ValueError("START cannot be an edge target")
        else:
            if self.decide is None:
                raise ValueError("CONDITIONAL edges require a decide function")
            if self.target is not None:
                raise ValueError("CONDITIONAL edges use decide/targets, not target")
            if self.targets is not None and START in self.targets:
                raise ValueError("START cannot be an edge target")
        return self

    @property
    def possible_targets(self) -> tuple[str, ...]:
        """Targets known without evaluating state (empty for undeclared decisions)."""
        if self.condition == EdgeCondition.ALWAYS:
            return (self.target,)
        return self.targets or ()

    def resolve(self, state: Mapping[str, Any]) -> list[str]:
        """
        Return the target names this edge selects for the given state.

        Static edges return their target. Conditional edges call ``decide``
        and flatten a single name or an iterable of names. ``None`` means no
        successor.

        Raises:
            EdgeDecisionError: decide raised or returned a non-name value
            UnknownNodeError: decide returned a name outside the declared targets
        """
        if self.condition == EdgeCondition.ALWAYS:
            return [self.target]

        try:
            decision = self.decide(state)
        except Exception as e:
            raise EdgeDecisionError(self.source, f"decide raised {type(e).__name__}: {e}") from e

        names = _flatten_decision(self.source, decision)
        if self.targets is not None:
            for name in names:
                if name not in self.targets:
                    raise UnknownNodeError(
                        name,
                        f"returned by conditional edge from '{self.source}', "
                        f"declared targets are {list(self.targets)}",
                    )
        return names


def _flatten_decision(source: str, decision: Any) -> list[str]:
    if decision is None:
        return []
    if isinstance(decision, str):
        return [decision]
    if isinstance(decision, Mapping) or not isinstance(decision, Iterable):
        raise EdgeDecisionError(
            source, f"decide must return a node name or names, got {type(decision).__name__}"
        )
    names = list(decision)
    for name in names:
        if not isinstance(name, str):
            raise EdgeDecisionError(
                source, f"decide returned a non-string node name: {name!r}"
            )
    return names
