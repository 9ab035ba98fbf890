"""
Tests for the reliability wrapper: retries, backoff and per-attempt timeouts,
independent of any graph.
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from wavegraph.config import ExecutorConfig
from wavegraph.errors import InvalidNodeOutputError, NodeExecutionError, NodeTimeoutError
from wavegraph.graph import NodeSpec, RetryPolicy, invoke_with_policy
from wavegraph.runtime import TracePhase, TraceRecorder


@pytest.fixture
def fast_sleep(monkeypatch):
    """Replace the backoff sleep so retries don't slow the suite down."""
    mock_sleep = AsyncMock()
    monkeypatch.setattr("asyncio.sleep", mock_sleep)
    return mock_sleep


def make_flaky(failures: int, exc: type[Exception] = RuntimeError):
    calls = []

    def op(ctx):
        calls.append(ctx.attempt)
        if len(calls) <= failures:
            raise exc(f"failure {len(calls)}")
        return {"attempts": len(calls)}

    return op, calls


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    def test_linear_backoff(self):
        policy = RetryPolicy(base_delay=0.2, backoff="linear")
        assert [policy.backoff_delay(a) for a in (1, 2, 3)] == pytest.approx([0.2, 0.4, 0.6])

    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay=0.5, backoff="exponential")
        assert [policy.backoff_delay(a) for a in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]

    def test_backoff_is_capped(self):
        policy = RetryPolicy(base_delay=10.0, backoff="exponential", max_delay=15.0)
        assert policy.backoff_delay(5) == 15.0

    def test_for_node_takes_node_policy(self):
        node = NodeSpec(name="n", operation=lambda ctx: {}, max_retries=4, timeout=2.5)
        policy = RetryPolicy.for_node(node)
        assert policy.max_retries == 4
        assert policy.timeout == 2.5

    def test_for_node_takes_engine_backoff(self):
        node = NodeSpec(name="n", operation=lambda ctx: {})
        config = ExecutorConfig(retry_base_delay=1.5, backoff="exponential")
        policy = RetryPolicy.for_node(node, config)
        assert policy.base_delay == 1.5
        assert policy.backoff == "exponential"


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class TestRetries:
    @pytest.mark.asyncio
    async def test_success_first_try(self, fast_sleep):
        op, calls = make_flaky(0)
        node = NodeSpec(name="n", operation=op, max_retries=2)

        assert await invoke_with_policy(node, {}) == {"attempts": 1}
        assert calls == [1]
        fast_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, fast_sleep):
        op, calls = make_flaky(2)
        node = NodeSpec(name="n", operation=op, max_retries=2)
        recorder = TraceRecorder()

        result = await invoke_with_policy(node, {}, recorder=recorder)

        assert result == {"attempts": 3}
        assert calls == [1, 2, 3]
        assert recorder.attempts("n") == 3

    @pytest.mark.asyncio
    async def test_backoff_between_attempts(self, fast_sleep):
        op, _ = make_flaky(2)
        node = NodeSpec(name="n", operation=op, max_retries=2)
        policy = RetryPolicy(max_retries=2, base_delay=0.2)

        await invoke_with_policy(node, {}, policy=policy)

        delays = [call.args[0] for call in fast_sleep.call_args_list]
        assert delays == pytest.approx([0.2, 0.4])

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_last_error(self, fast_sleep):
        op, calls = make_flaky(10, ValueError)
        node = NodeSpec(name="n", operation=op, max_retries=2)

        with pytest.raises(NodeExecutionError) as exc_info:
            await invoke_with_policy(node, {})

        error = exc_info.value
        assert error.node_name == "n"
        assert error.attempts == 3
        assert isinstance(error.last_error, ValueError)
        assert str(error.last_error) == "failure 3"
        assert error.__cause__ is error.last_error
        assert calls == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_no_retries_means_single_attempt(self, fast_sleep):
        op, calls = make_flaky(1)
        node = NodeSpec(name="n", operation=op)

        with pytest.raises(NodeExecutionError):
            await invoke_with_policy(node, {})

        assert calls == [1]
        fast_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_on_retry_called_before_each_retry(self, fast_sleep):
        op, _ = make_flaky(2)
        node = NodeSpec(name="n", operation=op, max_retries=3)
        seen = []

        await invoke_with_policy(node, {}, on_retry=lambda attempt, e: seen.append(attempt))

        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_every_attempt_gets_the_same_snapshot(self, fast_sleep):
        seen = []

        def op(ctx):
            seen.append(dict(ctx.state))
            if ctx.attempt == 1:
                raise RuntimeError("again")
            return {}

        node = NodeSpec(name="n", operation=op, max_retries=1)
        await invoke_with_policy(node, {"q": "x"})

        assert seen == [{"q": "x"}, {"q": "x"}]

    @pytest.mark.asyncio
    async def test_trace_marks_failed_attempts(self, fast_sleep):
        op, _ = make_flaky(1)
        node = NodeSpec(name="n", operation=op, max_retries=1)
        recorder = TraceRecorder()

        await invoke_with_policy(node, {}, recorder=recorder, step=4)

        events = recorder.dump()
        assert [(e.phase, e.attempt) for e in events] == [
            (TracePhase.START, 1),
            (TracePhase.END, 1),
            (TracePhase.START, 2),
            (TracePhase.END, 2),
        ]
        assert events[1].error == "RuntimeError: failure 1"
        assert events[3].error is None
        assert all(e.step == 4 for e in events)


# ---------------------------------------------------------------------------
# Output validation
# ---------------------------------------------------------------------------


class TestOutput:
    @pytest.mark.asyncio
    async def test_none_becomes_empty_update(self):
        node = NodeSpec(name="n", operation=lambda ctx: None)
        assert await invoke_with_policy(node, {}) == {}

    @pytest.mark.asyncio
    async def test_non_mapping_output_is_a_failure(self):
        node = NodeSpec(name="n", operation=lambda ctx: "oops")

        with pytest.raises(NodeExecutionError) as exc_info:
            await invoke_with_policy(node, {})

        assert isinstance(exc_info.value.last_error, InvalidNodeOutputError)

    @pytest.mark.asyncio
    async def test_async_operation(self):
        async def op(ctx):
            await asyncio.sleep(0)
            return {"node": ctx.node_name}

        node = NodeSpec(name="n", operation=op)
        assert await invoke_with_policy(node, {}) == {"node": "n"}


# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_async_timeout_fails_attempt(self):
        contexts = []

        async def slow(ctx):
            contexts.append(ctx)
            await asyncio.sleep(0.2)
            return {}

        node = NodeSpec(name="slow", operation=slow, timeout=0.05)

        with pytest.raises(NodeExecutionError) as exc_info:
            await invoke_with_policy(node, {})

        error = exc_info.value
        assert isinstance(error.last_error, NodeTimeoutError)
        assert error.last_error.timeout == 0.05
        assert error.attempts == 1
        assert contexts[0].cancelled is True

    @pytest.mark.asyncio
    async def test_timeouts_consume_retries(self):
        async def slow(ctx):
            await asyncio.sleep(0.2)
            return {}

        node = NodeSpec(name="slow", operation=slow, timeout=0.05, max_retries=1)
        recorder = TraceRecorder()

        with pytest.raises(NodeExecutionError) as exc_info:
            await invoke_with_policy(
                node, {}, policy=RetryPolicy.for_node(node, ExecutorConfig(retry_base_delay=0.0)),
                recorder=recorder,
            )

        assert exc_info.value.attempts == 2
        assert recorder.attempts("slow") == 2

    @pytest.mark.asyncio
    async def test_sync_operation_timeout(self):
        def blocking(ctx):
            time.sleep(0.2)
            return {"late": True}

        node = NodeSpec(name="blocking", operation=blocking, timeout=0.05)

        with pytest.raises(NodeExecutionError) as exc_info:
            await invoke_with_policy(node, {})

        assert isinstance(exc_info.value.last_error, NodeTimeoutError)

    @pytest.mark.asyncio
    async def test_operation_own_timeout_error_is_not_relabelled(self):
        contexts = []

        async def upstream(ctx):
            contexts.append(ctx)
            raise TimeoutError("upstream socket timeout")

        node = NodeSpec(name="upstream", operation=upstream, timeout=5.0)

        with pytest.raises(NodeExecutionError) as exc_info:
            await invoke_with_policy(node, {})

        last_error = exc_info.value.last_error
        assert type(last_error) is TimeoutError
        assert not isinstance(last_error, NodeTimeoutError)
        assert str(last_error) == "upstream socket timeout"
        assert contexts[0].cancelled is False

    @pytest.mark.asyncio
    async def test_fast_operation_within_timeout(self):
        async def quick(ctx):
            return {"done": True}

        node = NodeSpec(name="quick", operation=quick, timeout=1.0)
        assert await invoke_with_policy(node, {}) == {"done": True}
