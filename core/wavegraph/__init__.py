"""
wavegraph - a small in-process graph orchestration engine.

Nodes are named operations with a retry/timeout policy. Edges, static or
computed from state, decide which nodes run next. The executor runs each
frontier of nodes concurrently, merges their partial updates into a shared
state after all of them finish, and repeats until nothing is left to run
or the step budget is spent.
"""

from wavegraph.config import ExecutorConfig
from wavegraph.errors import (
    DuplicateNodeError,
    EdgeDecisionError,
    GraphDefinitionError,
    InvalidNodeOutputError,
    NodeExecutionError,
    NodeTimeoutError,
    RunTimeoutError,
    StateConflictError,
    UnknownNodeError,
    WavegraphError,
)
from wavegraph.graph import (
    END,
    START,
    ExecutionResult,
    Graph,
    GraphExecutor,
    NodeContext,
    NodeSpec,
    RetryPolicy,
    invoke_with_policy,
)
from wavegraph.runtime import TraceEvent, TracePhase, TraceRecorder, TraceStore

__version__ = "0.1.0"

__all__ = [
    "Graph",
    "GraphExecutor",
    "ExecutionResult",
    "ExecutorConfig",
    "NodeSpec",
    "NodeContext",
    "RetryPolicy",
    "invoke_with_policy",
    "START",
    "END",
    "TraceRecorder",
    "TraceStore",
    "TraceEvent",
    "TracePhase",
    "WavegraphError",
    "GraphDefinitionError",
    "DuplicateNodeError",
    "UnknownNodeError",
    "EdgeDecisionError",
    "NodeTimeoutError",
    "InvalidNodeOutputError",
    "NodeExecutionError",
    "StateConflictError",
    "RunTimeoutError",
]
