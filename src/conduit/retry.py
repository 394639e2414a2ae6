"""Bounded retry for model requests.

``RetryPolicy`` is a pure delay calculator; ``RetryExecutor`` runs an async
operation under a policy and a provider-specific error classifier.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from conduit.constants import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_INITIAL_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    MAX_RETRIES_ABSOLUTE_LIMIT,
)
from conduit.errors import (
    BadGatewayError,
    ConfigurationError,
    RateLimitError,
    _walk_exception_chain,
)
from conduit.hooks import HookRunner, ModelErrorContext
from conduit.types import ClassifiedError, ErrorCategory

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from conduit.hooks import HooksInput

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy with a hard cap on retries."""

    initial_delay_ms: float = DEFAULT_INITIAL_DELAY_MS
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        """Validate and clamp so retry behavior stays predictable."""
        if self.initial_delay_ms < 0:
            raise ConfigurationError(
                "RetryPolicy.initial_delay_ms must be >= 0",
                hint="Use 0 to retry without waiting.",
            )
        if self.max_delay_ms < 0:
            raise ConfigurationError("RetryPolicy.max_delay_ms must be >= 0")
        if self.backoff_factor <= 0:
            raise ConfigurationError("RetryPolicy.backoff_factor must be > 0")
        if self.max_retries < 0:
            raise ConfigurationError(
                "RetryPolicy.max_retries must be >= 0",
                hint="Use 0 to disable retries.",
            )
        if self.max_retries > MAX_RETRIES_ABSOLUTE_LIMIT:
            object.__setattr__(self, "max_retries", MAX_RETRIES_ABSOLUTE_LIMIT)

    def get_delay_for_attempt(self, attempt: int) -> float:
        """Return the delay in milliseconds before retrying *attempt* (0-based)."""
        delay = self.initial_delay_ms * (self.backoff_factor ** max(0, attempt))
        return min(delay, self.max_delay_ms)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_transient_network_error(exc: BaseException) -> bool:
    """Return True for transport-level failures anywhere in the exception chain."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        # RequestError is a stable base class for transport-level failures.
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


@dataclass(frozen=True)
class RetryContext:
    """What the model-error hooks get to see about the failing request."""

    input: Any = None
    options: Any = None
    provider_request: Any = None


class RetryExecutor:
    """Run an async operation, retrying per policy and classifier."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        classifier: Callable[[BaseException], ClassifiedError],
        hook_runner: HookRunner | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or DEFAULT_RETRY_POLICY
        self.classifier = classifier
        self.hook_runner = hook_runner
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: RetryContext | None = None,
        hooks: HooksInput = None,
    ) -> T:
        """Call *operation* until it succeeds or the policy gives up.

        Raises:
            RateLimitError: The provider rate limited the request.
            BadGatewayError: The error is unrecoverable or retries ran out.
                The original error message is preserved and chained.
        """
        ctx = context or RetryContext()
        if hooks is not None or self.hook_runner is None:
            runner = HookRunner(hooks)
        else:
            runner = self.hook_runner
        attempt = 0
        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                classified = self.classifier(exc)
                error_ctx = ModelErrorContext(
                    error=exc,
                    input=ctx.input,
                    options=ctx.options,
                    provider_request=ctx.provider_request,
                )

                exhausted = not self.policy.should_retry(attempt)
                if exhausted or not classified.should_retry:
                    await runner.on_unrecoverable_model_error(error_ctx)
                    if exhausted and classified.should_retry:
                        logger.error(
                            "Model request failed after %d retries: %s",
                            attempt,
                            exc,
                        )
                    else:
                        logger.error("Unrecoverable model error: %s", exc)
                    raise terminal_error(classified) from exc

                delay_ms = self.policy.get_delay_for_attempt(attempt)
                await runner.on_retryable_model_error(error_ctx)
                logger.warning(
                    "Model request failed (%s, attempt %d/%d); retrying in %.0fms: %s",
                    classified.category.value,
                    attempt + 1,
                    self.policy.max_retries,
                    delay_ms,
                    exc,
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1


def terminal_error(classified: ClassifiedError) -> Exception:
    exc = classified.error
    message = str(exc) or type(exc).__name__
    if classified.category is ErrorCategory.RATE_LIMIT:
        retry_after_s = (
            classified.suggested_delay_ms / 1000
            if classified.suggested_delay_ms is not None
            else None
        )
        return RateLimitError(message, retryable=False, retry_after_s=retry_after_s)
    return BadGatewayError(message, retryable=False)
