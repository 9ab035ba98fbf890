"""TraceRecorder: passive log of node attempts during a run.

The scheduler and the reliability wrapper call ``record_start`` and
``record_end`` around every attempt. Nothing reads the trace back during a
run, so a disabled recorder changes no outcome.

Usage::

    recorder = TraceRecorder()
    executor = GraphExecutor(graph, recorder=recorder)
    await executor.run({"question": "..."})
    for event in recorder.dump():
        print(event.node_name, event.phase, event.timestamp)

Thread-safe: appends happen under a lock because sync operations report
from worker threads.
"""

from __future__ import annotations

import logging
import threading
import time

from wavegraph.observability import get_trace_context
from wavegraph.runtime.trace_schemas import SYSTEM_NODE, TraceEvent, TracePhase

logger = logging.getLogger(__name__)


class TraceRecorder:
    """Append-only per-run trace of node start/end events."""

    def __init__(self, enabled: bool = True, run_id: str = "") -> None:
        self.enabled = enabled
        self.run_id = run_id
        self._events: list[TraceEvent] = []
        self._started: dict[tuple[str, int, int], float] = {}
        self._lock = threading.Lock()

    def _append(self, event: TraceEvent) -> None:
        with self._lock:
            self._events.append(event)

    def _correlation(self) -> dict[str, str]:
        ctx = get_trace_context()
        return {
            "run_id": self.run_id or ctx.get("run_id", ""),
            "trace_id": ctx.get("trace_id", ""),
        }

    def record_start(self, node_name: str, *, step: int = 0, attempt: int = 1) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._started[(node_name, step, attempt)] = time.monotonic()
        self._append(
            TraceEvent(
                node_name=node_name,
                phase=TracePhase.START,
                step=step,
                attempt=attempt,
                **self._correlation(),
            )
        )

    def record_end(
        self,
        node_name: str,
        *,
        step: int = 0,
        attempt: int = 1,
        error: BaseException | str | None = None,
    ) -> None:
        if not self.enabled:
            return
        with self._lock:
            started = self._started.pop((node_name, step, attempt), None)
        duration_ms = int((time.monotonic() - started) * 1000) if started is not None else None
        if isinstance(error, BaseException):
            error = f"{type(error).__name__}: {error}"
        self._append(
            TraceEvent(
                node_name=node_name,
                phase=TracePhase.END,
                step=step,
                attempt=attempt,
                duration_ms=duration_ms,
                error=error,
                **self._correlation(),
            )
        )

    def record_budget_exhausted(self, step: int, pending: list[str]) -> None:
        if not self.enabled:
            return
        self._append(
            TraceEvent(
                node_name=SYSTEM_NODE,
                phase=TracePhase.STEP_BUDGET_EXHAUSTED,
                step=step,
                pending=list(pending),
                **self._correlation(),
            )
        )

    def extend(self, events: list[TraceEvent]) -> None:
        """Append events recorded elsewhere, e.g. a finished run's trace."""
        if not self.enabled:
            return
        with self._lock:
            self._events.extend(events)

    def dump(self) -> list[TraceEvent]:
        """Return a copy of the events recorded so far, in order."""
        with self._lock:
            return list(self._events)

    def attempts(self, node_name: str) -> int:
        """Number of attempts started for ``node_name`` among the recorded events."""
        return sum(
            1
            for e in self.dump()
            if e.node_name == node_name and e.phase == TracePhase.START
        )

    def budget_exhausted(self) -> bool:
        return any(e.phase == TracePhase.STEP_BUDGET_EXHAUSTED for e in self.dump())

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._started.clear()
