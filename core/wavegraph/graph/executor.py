"""
Graph Executor - Runs graphs superstep by superstep.

The executor:
1. Takes a Graph, an initial state and a start node
2. Selects the frontier (the start node, or START's successors)
3. Starts every frontier node concurrently through the reliability wrapper
4. Joins on the whole frontier (the barrier) before looking at any result
5. Merges the partial updates into the run state
6. Computes the next frontier from the edges of every node that just ran
7. Repeats until the frontier is empty or the step budget is spent

A node that exhausts its retries aborts the run: sibling results from the
same superstep are discarded and the state accumulated so far is returned
alongside the error. Running out of steps is not an error; the run ends
with ``budget_exhausted`` set and a marker in the trace.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from wavegraph.config import ExecutorConfig
from wavegraph.errors import NodeExecutionError, RunTimeoutError, UnknownNodeError, WavegraphError
from wavegraph.graph.builder import Graph
from wavegraph.graph.edge import START
from wavegraph.graph.retry import RetryPolicy, invoke_with_policy
from wavegraph.graph.state import RunState, merge_updates, snapshot
from wavegraph.observability import clear_trace_context, get_trace_context, set_trace_context
from wavegraph.runtime.trace_recorder import TraceRecorder
from wavegraph.runtime.trace_schemas import TraceEvent


@dataclass
class ExecutionResult:
    """Result of executing a graph."""

    success: bool
    state: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    failed_node: str | None = None
    exception: BaseException | None = field(default=None, repr=False)
    steps_executed: int = 0
    path: list[list[str]] = field(default_factory=list)  # Frontier of each superstep
    budget_exhausted: bool = False
    run_id: str = ""
    duration_ms: int = 0
    trace: list[TraceEvent] = field(default_factory=list, repr=False)

    # Execution quality metrics
    node_visit_counts: dict[str, int] = field(default_factory=dict)  # {node_name: visits}
    retry_details: dict[str, int] = field(default_factory=dict)  # {node_name: retries}

    @property
    def total_retries(self) -> int:
        return sum(self.retry_details.values())

    @property
    def terminated(self) -> bool:
        """True if the run reached an empty frontier."""
        return self.success and not self.budget_exhausted

    @property
    def execution_quality(self) -> str:
        """'clean', 'degraded' (retries or step budget hit) or 'failed'."""
        if not self.success:
            return "failed"
        if self.budget_exhausted or self.total_retries:
            return "degraded"
        return "clean"


def _new_run_id() -> str:
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"


class GraphExecutor:
    """
    Executes graphs.

    Example:
        executor = GraphExecutor(graph, config=ExecutorConfig(max_steps=10))

        final_state = await executor.run({"question": "What is chunking?"})

        # or, without exceptions for node failures:
        result = await executor.execute({"question": "What is chunking?"})
        if not result.success:
            print(result.failed_node, result.error)
    """

    def __init__(
        self,
        graph: Graph,
        config: ExecutorConfig | None = None,
        recorder: TraceRecorder | None = None,
    ):
        """
        Initialize the executor.

        Args:
            graph: The graph to run; never mutated
            config: Step budget, backoff and merge settings
            recorder: Optional sink that receives every run's events once the
                run ends. Each run records into its own recorder, so
                ``ExecutionResult.trace`` only ever holds that run's events.
        """
        self.graph = graph
        self.config = config or ExecutorConfig()
        self.recorder = recorder
        self.logger = logging.getLogger(__name__)

    async def run(
        self,
        initial_state: Mapping[str, Any] | None = None,
        start_node: str = START,
    ) -> dict[str, Any]:
        """
        Run the graph and return the final state.

        Raises:
            UnknownNodeError: start node or a routed-to node is not registered
            NodeExecutionError: a node exhausted its retries; ``.state`` holds
                the state accumulated before the abort
            RunTimeoutError: the configured run deadline passed
        """
        result = await self.execute(initial_state, start_node)
        if not result.success and result.exception is not None:
            raise result.exception
        return result.state

    async def execute(
        self,
        initial_state: Mapping[str, Any] | None = None,
        start_node: str = START,
    ) -> ExecutionResult:
        """
        Run the graph and describe the outcome.

        Node failures, routing errors and run timeouts are reported in the
        returned ExecutionResult rather than raised.
        """
        run_id = _new_run_id()
        recorder = TraceRecorder(
            enabled=self.config.trace_enabled and (self.recorder is None or self.recorder.enabled),
            run_id=run_id,
        )

        previous_context = get_trace_context()
        set_trace_context(run_id=run_id, graph_id=self.graph.id)

        run = RunState(state=dict(initial_state or {}))
        started = time.monotonic()
        error: WavegraphError | None = None

        try:
            run.frontier = self._initial_frontier(start_node, run.state)
            self.logger.info(
                f"🚀 Starting run of graph '{self.graph.id}' at '{start_node}'",
                extra={"event": "run_started", "frontier": run.frontier},
            )
            if self.config.run_timeout is not None:
                try:
                    await asyncio.wait_for(
                        self._run_supersteps(run, recorder), timeout=self.config.run_timeout
                    )
                except TimeoutError as e:
                    raise RunTimeoutError(self.config.run_timeout, run.step_count) from e
            else:
                await self._run_supersteps(run, recorder)
        except WavegraphError as e:
            error = e
        finally:
            clear_trace_context()
            if previous_context:
                set_trace_context(**previous_context)

        budget_exhausted = error is None and bool(run.frontier)
        if budget_exhausted:
            recorder.record_budget_exhausted(run.step_count, run.frontier)
        trace = recorder.dump()
        if self.recorder is not None:
            self.recorder.extend(trace)

        duration_ms = int((time.monotonic() - started) * 1000)
        result = ExecutionResult(
            success=error is None,
            state=run.state,
            steps_executed=run.step_count,
            path=run.path,
            run_id=run_id,
            duration_ms=duration_ms,
            budget_exhausted=budget_exhausted,
            trace=trace,
            node_visit_counts=dict(run.node_visit_counts),
            retry_details=dict(run.retry_details),
        )

        if error is not None:
            if isinstance(error, NodeExecutionError):
                error.state = dict(run.state)
                result.failed_node = error.node_name
            result.error = str(error)
            result.exception = error
            self.logger.error(
                f"✗ Run aborted after {run.step_count} step(s): {error}",
                extra={"event": "run_failed", "step": run.step_count},
            )
            return result

        if budget_exhausted:
            self.logger.warning(
                f"⚠ Step budget of {self.config.max_steps} exhausted with "
                f"{run.frontier} still pending",
                extra={"event": "step_budget_exhausted", "step": run.step_count},
            )
        else:
            self.logger.info(
                f"✓ Run finished in {run.step_count} step(s) ({duration_ms}ms)",
                extra={"event": "run_completed", "latency_ms": duration_ms},
            )
        return result

    def _initial_frontier(self, start_node: str, state: Mapping[str, Any]) -> list[str]:
        if start_node == START:
            return self.graph.next_nodes(START, state)
        if start_node not in self.graph:
            raise UnknownNodeError(start_node, "start node")
        return [start_node]

    async def _run_supersteps(self, run: RunState, recorder: TraceRecorder) -> None:
        while run.frontier and run.step_count < self.config.max_steps:
            run.step_count += 1
            frontier = run.frontier
            run.record_frontier(frontier)
            view = snapshot(run.state)

            if len(frontier) > 1:
                self.logger.info(
                    f"⑂ Step {run.step_count}: running {len(frontier)} nodes concurrently: "
                    f"{frontier}",
                    extra={"event": "superstep", "step": run.step_count, "frontier": frontier},
                )
            else:
                self.logger.info(
                    f"▶ Step {run.step_count}: {frontier[0]}",
                    extra={"event": "superstep", "step": run.step_count, "frontier": frontier},
                )

            # Every task exists before any is awaited
            tasks = [
                asyncio.create_task(
                    self._invoke_node(name, view, recorder, run),
                    name=f"wavegraph:{name}",
                )
                for name in frontier
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

            merge_updates(
                run.state,
                list(zip(frontier, outcomes, strict=True)),
                self.config.conflict_strategy,
            )
            run.frontier = self._next_frontier(frontier, run.state)

    async def _invoke_node(
        self,
        name: str,
        view: Mapping[str, Any],
        recorder: TraceRecorder,
        run: RunState,
    ) -> dict[str, Any]:
        node = self.graph.get_node(name)
        if node is None:
            raise UnknownNodeError(name, "scheduled node")

        def _count_retry(attempt: int, error: Exception) -> None:
            run.retry_details[name] = run.retry_details.get(name, 0) + 1

        return await invoke_with_policy(
            node,
            view,
            policy=RetryPolicy.for_node(node, self.config),
            recorder=recorder,
            step=run.step_count,
            on_retry=_count_retry,
        )

    def _next_frontier(self, ran: list[str], state: Mapping[str, Any]) -> list[str]:
        frontier: list[str] = []
        seen: set[str] = set()
        for name in ran:
            for successor in self.graph.next_nodes(name, state):
                if successor not in seen:
                    seen.add(successor)
                    frontier.append(successor)
        return frontier
