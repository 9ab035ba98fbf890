"""Graph structures: Nodes, Edges, the Graph registry and its Executor."""

from wavegraph.graph.builder import Graph
from wavegraph.graph.edge import END, START, EdgeCondition, EdgeSpec
from wavegraph.graph.executor import ExecutionResult, GraphExecutor
from wavegraph.graph.node import NodeContext, NodeSpec
from wavegraph.graph.retry import RetryPolicy, invoke_with_policy
from wavegraph.graph.state import ConflictStrategy, RunState, merge_updates, snapshot
from wavegraph.graph.validator import OutputValidator, ValidationResult

__all__ = [
    # Node
    "NodeSpec",
    "NodeContext",
    # Edge
    "EdgeSpec",
    "EdgeCondition",
    "START",
    "END",
    # Registry
    "Graph",
    # Executor
    "GraphExecutor",
    "ExecutionResult",
    # Reliability
    "RetryPolicy",
    "invoke_with_policy",
    # State
    "RunState",
    "ConflictStrategy",
    "merge_updates",
    "snapshot",
    # Validation
    "OutputValidator",
    "ValidationResult",
]
