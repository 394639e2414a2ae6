"""Retry policy and executor tests.

The executor is exercised with an injected sleep so backoff is observable
without waiting.
"""

from __future__ import annotations

import asyncio

import httpx
from hypothesis import given
from hypothesis import strategies as st
import pytest

from conduit.constants import MAX_RETRIES_ABSOLUTE_LIMIT
from conduit.errors import APIError, BadGatewayError, ConfigurationError, RateLimitError
from conduit.hooks import HookRunner, Hooks
from conduit.providers._errors import classify_common, rate_limited, retryable, unrecoverable
from conduit.retry import (
    RetryContext,
    RetryExecutor,
    RetryPolicy,
    is_transient_network_error,
)
from conduit.types import ErrorCategory

pytestmark = pytest.mark.unit


class _Flaky:
    """Operation that raises the scripted errors before returning ``"ok"``."""

    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


# =============================================================================
# RetryPolicy
# =============================================================================


def test_policy_defaults() -> None:
    policy = RetryPolicy()
    assert policy.initial_delay_ms == 1000
    assert policy.max_delay_ms == 32000
    assert policy.backoff_factor == 2.0
    assert policy.max_retries == 6


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_delay_ms": -1},
        {"max_delay_ms": -1},
        {"backoff_factor": 0},
        {"max_retries": -1},
    ],
)
def test_policy_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        RetryPolicy(**kwargs)


def test_policy_clamps_max_retries_to_absolute_limit() -> None:
    assert RetryPolicy(max_retries=10_000).max_retries == MAX_RETRIES_ABSOLUTE_LIMIT


def test_policy_delay_sequence_doubles_then_caps() -> None:
    policy = RetryPolicy(initial_delay_ms=100, max_delay_ms=500, backoff_factor=2)
    delays = [policy.get_delay_for_attempt(i) for i in range(5)]
    assert delays == [100, 200, 400, 500, 500]


def test_policy_default_delay_table() -> None:
    policy = RetryPolicy()
    assert [policy.get_delay_for_attempt(i) for i in range(7)] == [
        1000,
        2000,
        4000,
        8000,
        16000,
        32000,
        32000,
    ]


def test_policy_should_retry_bounds() -> None:
    policy = RetryPolicy(max_retries=2)
    assert policy.should_retry(0)
    assert policy.should_retry(1)
    assert not policy.should_retry(2)


@given(
    initial=st.floats(min_value=0, max_value=10_000),
    cap=st.floats(min_value=0, max_value=100_000),
    factor=st.floats(min_value=1, max_value=10),
    attempt=st.integers(min_value=0, max_value=60),
)
def test_policy_delay_is_bounded_and_monotonic(initial, cap, factor, attempt) -> None:
    policy = RetryPolicy(initial_delay_ms=initial, max_delay_ms=cap, backoff_factor=factor)

    delay = policy.get_delay_for_attempt(attempt)
    following = policy.get_delay_for_attempt(attempt + 1)

    assert 0 <= delay <= cap
    assert following >= delay


# =============================================================================
# is_transient_network_error
# =============================================================================


def test_transient_network_errors_detected_through_chain() -> None:
    request = httpx.Request("GET", "https://example.invalid")
    wrapped = RuntimeError("sdk wrapper")
    wrapped.__cause__ = httpx.ConnectError("refused", request=request)

    assert is_transient_network_error(asyncio.TimeoutError())
    assert is_transient_network_error(httpx.ReadTimeout("slow", request=request))
    assert is_transient_network_error(wrapped)
    assert not is_transient_network_error(ValueError("bad input"))


# =============================================================================
# RetryExecutor
# =============================================================================


def _executor(no_sleep, policy: RetryPolicy | None = None, classifier=None) -> RetryExecutor:
    return RetryExecutor(
        policy or RetryPolicy(initial_delay_ms=10, max_retries=3),
        classifier=classifier or (lambda e: retryable(e)),
        sleep=no_sleep,
    )


@pytest.mark.asyncio
async def test_executor_returns_first_success(no_sleep) -> None:
    op = _Flaky()
    assert await _executor(no_sleep).execute(op) == "ok"
    assert op.calls == 1
    assert no_sleep.delays == []


@pytest.mark.asyncio
async def test_executor_retries_with_backoff_then_succeeds(no_sleep) -> None:
    op = _Flaky(RuntimeError("a"), RuntimeError("b"))

    assert await _executor(no_sleep).execute(op) == "ok"

    assert op.calls == 3
    assert no_sleep.delays == [0.01, 0.02]


@pytest.mark.asyncio
async def test_executor_gives_up_after_max_retries(no_sleep) -> None:
    """max_retries=3 means four attempts in total, then a 502 chained to the cause."""
    errors = [RuntimeError(f"fail {i}") for i in range(10)]
    op = _Flaky(*errors)

    with pytest.raises(BadGatewayError) as exc_info:
        await _executor(no_sleep).execute(op)

    assert op.calls == 4
    assert len(no_sleep.delays) == 3
    assert exc_info.value.status_code == 502
    assert str(exc_info.value) == "fail 3"
    assert exc_info.value.__cause__ is errors[3]


@pytest.mark.asyncio
async def test_executor_does_not_retry_unrecoverable_errors(no_sleep) -> None:
    original = ValueError("invalid request")
    op = _Flaky(original)

    with pytest.raises(BadGatewayError) as exc_info:
        await _executor(no_sleep, classifier=unrecoverable).execute(op)

    assert op.calls == 1
    assert no_sleep.delays == []
    assert exc_info.value.__cause__ is original


@pytest.mark.asyncio
async def test_executor_surfaces_rate_limit_with_retry_after(no_sleep) -> None:
    class _RateLimited(Exception):
        retry_after = 3

    op = _Flaky(_RateLimited("slow down"))

    with pytest.raises(RateLimitError) as exc_info:
        await _executor(no_sleep, classifier=rate_limited).execute(op)

    assert op.calls == 1
    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after_s == 3.0


@pytest.mark.asyncio
async def test_executor_zero_retries_makes_exactly_one_attempt(no_sleep) -> None:
    op = _Flaky(RuntimeError("once"))
    with pytest.raises(BadGatewayError):
        await _executor(no_sleep, policy=RetryPolicy(max_retries=0)).execute(op)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_executor_propagates_cancellation(no_sleep) -> None:
    op = _Flaky(asyncio.CancelledError())
    with pytest.raises(asyncio.CancelledError):
        await _executor(no_sleep).execute(op)
    assert op.calls == 1


@pytest.mark.asyncio
async def test_executor_invokes_error_hooks_with_context(no_sleep) -> None:
    events: list[tuple[str, object]] = []
    hooks = Hooks(
        on_retryable_model_error=lambda ctx: events.append(("retryable", ctx)),
        on_unrecoverable_model_error=lambda ctx: events.append(("fatal", ctx)),
    )
    op = _Flaky(RuntimeError("one"), RuntimeError("two"))
    ctx = RetryContext(input="hi", options=None, provider_request={"model": "m"})

    with pytest.raises(BadGatewayError):
        await _executor(no_sleep, policy=RetryPolicy(max_retries=1)).execute(
            op, context=ctx, hooks=hooks
        )

    assert [name for name, _ in events] == ["retryable", "fatal"]
    assert str(events[0][1].error) == "one"
    assert events[1][1].provider_request == {"model": "m"}
    assert events[1][1].input == "hi"


@pytest.mark.asyncio
async def test_executor_uses_constructor_hook_runner(no_sleep) -> None:
    seen: list[str] = []
    runner = HookRunner(Hooks(on_retryable_model_error=lambda ctx: seen.append(str(ctx.error))))
    executor = RetryExecutor(
        RetryPolicy(max_retries=1),
        classifier=retryable,
        hook_runner=runner,
        sleep=no_sleep,
    )

    assert await executor.execute(_Flaky(RuntimeError("blip"))) == "ok"
    assert seen == ["blip"]


# =============================================================================
# classify_common
# =============================================================================


def test_classify_common_honors_api_error_metadata() -> None:
    assert classify_common(APIError("x", status_code=429)).category is ErrorCategory.RATE_LIMIT
    assert classify_common(APIError("x", retryable=True)).should_retry is True
    assert classify_common(APIError("x", retryable=False)).should_retry is False
    assert classify_common(ValueError("x")) is None


def test_classify_common_retries_transport_errors() -> None:
    classified = classify_common(TimeoutError("timed out"))
    assert classified is not None
    assert classified.category is ErrorCategory.RETRYABLE
