"""
Error taxonomy for graph construction and execution.

Construction errors are raised eagerly by ``Graph`` while the topology is
being assembled. Execution errors are raised by the reliability wrapper and
the scheduler. ``GraphExecutor.execute()`` converts them into a failed
``ExecutionResult`` and ``GraphExecutor.run()`` lets them propagate.
"""

from typing import Any


class WavegraphError(Exception):
    """Base class for every error raised by wavegraph."""


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


class GraphDefinitionError(WavegraphError, ValueError):
    """The graph topology is malformed."""


class DuplicateNodeError(GraphDefinitionError):
    """A node name was registered twice."""

    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(f"Node '{node_name}' is already registered")


class UnknownNodeError(GraphDefinitionError):
    """An edge, decision or start node refers to an unregistered node."""

    def __init__(self, node_name: str, context: str = ""):
        self.node_name = node_name
        self.context = context
        message = f"Unknown node '{node_name}'"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)


class EdgeDecisionError(GraphDefinitionError):
    """A conditional edge's decide function failed or returned garbage."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Conditional edge from '{source}': {message}")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class NodeTimeoutError(WavegraphError, TimeoutError):
    """A single node attempt exceeded its timeout. Retryable."""

    def __init__(self, node_name: str, timeout: float, attempt: int):
        self.node_name = node_name
        self.timeout = timeout
        self.attempt = attempt
        super().__init__(f"Node '{node_name}' timed out after {timeout}s (attempt {attempt})")


class InvalidNodeOutputError(WavegraphError, TypeError):
    """An operation returned something other than a mapping or None."""

    def __init__(self, node_name: str, received: Any):
        self.node_name = node_name
        self.received_type = type(received).__name__
        super().__init__(
            f"Node '{node_name}' must return a mapping of state updates, "
            f"got {self.received_type}"
        )


class NodeExecutionError(WavegraphError):
    """A node exhausted its retry budget. Fatal to the run."""

    def __init__(
        self,
        node_name: str,
        last_error: BaseException,
        attempts: int,
        state: dict[str, Any] | None = None,
    ):
        self.node_name = node_name
        self.last_error = last_error
        self.attempts = attempts
        # Filled in by the scheduler with the state accumulated before the abort
        self.state: dict[str, Any] = dict(state or {})
        super().__init__(
            f"Node '{node_name}' failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )


class StateConflictError(WavegraphError):
    """Sibling nodes in one frontier wrote the same key under the 'error' strategy."""

    def __init__(self, key: str, writers: list[str]):
        self.key = key
        self.writers = list(writers)
        super().__init__(f"State key '{key}' written by multiple sibling nodes: {self.writers}")


class RunTimeoutError(WavegraphError, TimeoutError):
    """The whole run exceeded the configured run-level deadline."""

    def __init__(self, timeout: float, steps_executed: int):
        self.timeout = timeout
        self.steps_executed = steps_executed
        super().__init__(f"Run exceeded {timeout}s after {steps_executed} step(s)")
