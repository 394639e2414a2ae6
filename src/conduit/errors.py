"""Exception hierarchy for Conduit."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class ConduitError(Exception):
    """Base exception for all Conduit errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(ConduitError):
    """Configuration validation or resolution failed."""


class ToolError(ConduitError):
    """A tool could not be dispatched."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        tool_name: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name


class UnknownToolError(ToolError):
    """The model asked for a tool that is not registered."""


class ToolArgumentsError(ToolError):
    """Tool arguments did not match the declared parameter schema."""


class APIError(ConduitError):
    """API call failed.

    Carries HTTP-ish metadata so callers can decide what to do next without
    string matching on messages.
    """

    default_status: int | None = None
    title: str = "API Error"

    def __init__(
        self,
        message: str | None = None,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message or self.title, hint=hint)
        self.retryable = retryable
        self.status_code = (
            status_code if status_code is not None else self.default_status
        )
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class BadGatewayError(APIError):
    """The upstream model provider failed and will not be retried further."""

    default_status = 502
    title = "Bad Gateway"


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""

    default_status = 429
    title = "Too Many Requests"


class TooManyTurnsError(APIError):
    """The model kept requesting tools past the turn limit."""

    default_status = 429
    title = "Too Many Turns"


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
