"""
Reliability wrapper: timeout and bounded retry around one node invocation.

Independent of graph logic. Given a node and a state snapshot,
``invoke_with_policy`` keeps calling the node's operation until it returns
a valid partial update or the retry budget is spent:

    attempt 1 ──fail──▶ sleep(backoff_delay(1)) ──▶ attempt 2 ──fail──▶ ...
                                                    └──ok──▶ return update

A timeout fails the attempt, not the run. The operation is cancelled if it
is a coroutine. A plain function running in a worker thread cannot be
interrupted; its result is discarded when it eventually returns, and any
side effects it already caused remain. ``NodeContext.cancel_event`` is set
in both cases so cooperative operations can stop early.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from wavegraph.config import DEFAULT_BACKOFF, DEFAULT_RETRY_BASE_DELAY, ExecutorConfig
from wavegraph.errors import InvalidNodeOutputError, NodeExecutionError, NodeTimeoutError
from wavegraph.graph.node import NodeContext, NodeSpec
from wavegraph.graph.validator import OutputValidator
from wavegraph.observability import set_trace_context
from wavegraph.runtime.trace_recorder import TraceRecorder

logger = logging.getLogger(__name__)

_validator = OutputValidator()


@dataclass
class RetryPolicy:
    """Per-node retry/timeout policy plus the engine-wide backoff settings."""

    max_retries: int = 0
    timeout: float | None = None
    base_delay: float = DEFAULT_RETRY_BASE_DELAY
    backoff: str = DEFAULT_BACKOFF  # "linear" or "exponential"
    max_delay: float = 30.0

    @classmethod
    def for_node(cls, node: NodeSpec, config: ExecutorConfig | None = None) -> "RetryPolicy":
        if config is None:
            return cls(max_retries=node.max_retries, timeout=node.timeout)
        return cls(
            max_retries=node.max_retries,
            timeout=node.timeout,
            base_delay=config.retry_base_delay,
            backoff=config.backoff,
        )

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before the attempt following failed attempt number ``attempt``.

        Linear: base * attempt (0.2s, 0.4s, 0.6s...)
        Exponential: base * 2^(attempt - 1) (0.2s, 0.4s, 0.8s...)
        Both are capped at ``max_delay``.
        """
        if self.backoff == "exponential":
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return min(delay, self.max_delay)


async def _call_operation(node: NodeSpec, ctx: NodeContext) -> Any:
    if inspect.iscoroutinefunction(node.operation):
        result = await node.operation(ctx)
    else:
        result = await asyncio.to_thread(node.operation, ctx)
    # Sync callables may hand back an awaitable (e.g. functools.partial of a coroutine)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _run_attempt(node: NodeSpec, ctx: NodeContext, timeout: float | None) -> Any:
    if timeout is None:
        return await _call_operation(node, ctx)
    try:
        async with asyncio.timeout(timeout) as deadline:
            return await _call_operation(node, ctx)
    except TimeoutError as e:
        # A TimeoutError raised by the operation itself is an ordinary failure
        if not deadline.expired():
            raise
        ctx.cancel_event.set()
        raise NodeTimeoutError(node.name, timeout, ctx.attempt) from e


def _check_output(node: NodeSpec, output: Any) -> dict[str, Any]:
    validation = _validator.validate_output(node, output)
    if not validation.success:
        raise InvalidNodeOutputError(node.name, output)
    for warning in validation.warnings:
        logger.warning(f"Node '{node.name}': {warning}", extra={"node_name": node.name})
    return dict(output) if output is not None else {}


async def invoke_with_policy(
    node: NodeSpec,
    state: Mapping[str, Any],
    *,
    policy: RetryPolicy | None = None,
    recorder: TraceRecorder | None = None,
    step: int = 0,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> dict[str, Any]:
    """
    Run ``node`` against ``state`` under its timeout and retry policy.

    Args:
        node: The node to run
        state: Read-only snapshot handed to every attempt
        policy: Overrides the policy derived from ``node``
        recorder: Receives a start and an end event for every attempt
        step: Superstep index, for the trace
        on_retry: Called with the failed attempt number and its error
            before each backoff sleep

    Returns:
        The operation's partial state update (empty dict for None)

    Raises:
        NodeExecutionError: every attempt failed; chained from the last error
    """
    policy = policy or RetryPolicy.for_node(node)
    max_attempts = policy.max_retries + 1
    set_trace_context(node_name=node.name)

    attempt = 0
    while True:
        attempt += 1
        ctx = NodeContext(node_name=node.name, state=state, attempt=attempt, step=step)
        if recorder:
            recorder.record_start(node.name, step=step, attempt=attempt)
        logger.debug(
            f"▶ {node.name}: attempt {attempt}/{max_attempts}",
            extra={"event": "node_attempt", "node_name": node.name, "attempt": attempt},
        )

        try:
            output = await _run_attempt(node, ctx, policy.timeout)
            result = _check_output(node, output)
        except asyncio.CancelledError:
            # Run aborted from outside; not a node failure
            ctx.cancel_event.set()
            if recorder:
                recorder.record_end(node.name, step=step, attempt=attempt, error="cancelled")
            raise
        except Exception as e:
            if recorder:
                recorder.record_end(node.name, step=step, attempt=attempt, error=e)

            if attempt < max_attempts:
                delay = policy.backoff_delay(attempt)
                logger.warning(
                    f"↻ {node.name}: attempt {attempt}/{max_attempts} failed "
                    f"({type(e).__name__}: {e}), retrying in {delay:.2f}s",
                    extra={"event": "node_retry", "node_name": node.name, "attempt": attempt},
                )
                if on_retry:
                    on_retry(attempt, e)
                await asyncio.sleep(delay)
                continue

            logger.error(
                f"✗ {node.name}: failed after {attempt} attempt(s): {type(e).__name__}: {e}",
                extra={"event": "node_failed", "node_name": node.name, "attempt": attempt},
            )
            raise NodeExecutionError(node.name, e, attempt) from e

        if recorder:
            recorder.record_end(node.name, step=step, attempt=attempt)
        logger.debug(
            f"✓ {node.name}: attempt {attempt} succeeded",
            extra={"event": "node_succeeded", "node_name": node.name, "attempt": attempt},
        )
        return result
