"""Pydantic models for run traces.

A trace is an append-only list of events, one list per run:

- start: a node attempt began
- end: a node attempt finished (``error`` set when it failed)
- step_budget_exhausted: the scheduler stopped with work still pending
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

# Node name used for events that belong to the scheduler rather than a node
SYSTEM_NODE = "SYSTEM"


class TracePhase(StrEnum):
    START = "start"
    END = "end"
    STEP_BUDGET_EXHAUSTED = "step_budget_exhausted"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TraceEvent(BaseModel):
    """A single timestamped event in a run's trace."""

    node_name: str
    phase: TracePhase
    timestamp: datetime = Field(default_factory=_utcnow)
    step: int = 0  # superstep index, 1-based; 0 if unknown
    attempt: int = 0  # node attempt, 1-based; 0 for scheduler events
    duration_ms: int | None = None  # end events only
    error: str | None = None  # failed end events only
    pending: list[str] = Field(default_factory=list)  # frontier left when budget ran out
    run_id: str = ""
    trace_id: str = ""

    @property
    def failed(self) -> bool:
        return self.phase == TracePhase.END and self.error is not None


class RunTrace(BaseModel):
    """Container for a persisted run trace."""

    run_id: str
    graph_id: str = ""
    events: list[TraceEvent] = Field(default_factory=list)
