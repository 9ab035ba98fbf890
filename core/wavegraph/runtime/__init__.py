"""Run diagnostics: trace events, the in-memory recorder and file storage."""

from wavegraph.runtime.trace_recorder import TraceRecorder
from wavegraph.runtime.trace_schemas import SYSTEM_NODE, RunTrace, TraceEvent, TracePhase
from wavegraph.runtime.trace_store import TraceStore

__all__ = [
    "TraceRecorder",
    "TraceStore",
    "TraceEvent",
    "TracePhase",
    "RunTrace",
    "SYSTEM_NODE",
]
