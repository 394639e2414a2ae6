"""Lifecycle hooks for the operate and stream loops.

Hooks are optional callables; each receives a small context dataclass and may
be sync or async. A hook that raises aborts the loop: hooks are observers
that can veto, never silently ignored.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
import inspect
from typing import TYPE_CHECKING, Any, Union

from conduit.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from conduit.types import UsageItem


async def resolve_value(value: Any) -> Any:
    """Await *value* if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


# =============================================================================
# Contexts
# =============================================================================


@dataclass(frozen=True)
class ModelRequestContext:
    input: Any
    options: Any
    provider_request: Any


@dataclass(frozen=True)
class ModelResponseContext:
    content: Any
    input: Any
    options: Any
    provider_request: Any
    provider_response: Any
    usage: list[UsageItem]


@dataclass(frozen=True)
class ToolContext:
    """Context for the tool hooks; ``result`` and ``error`` are slot-specific."""

    tool_name: str
    args: str
    result: Any = None
    error: BaseException | None = None


@dataclass(frozen=True)
class ModelErrorContext:
    error: BaseException
    input: Any = None
    options: Any = None
    provider_request: Any = None


# =============================================================================
# Hooks
# =============================================================================


@dataclass(frozen=True)
class Hooks:
    """Optional lifecycle callbacks."""

    before_each_model_request: Callable[[ModelRequestContext], Any] | None = None
    after_each_model_response: Callable[[ModelResponseContext], Any] | None = None
    before_each_tool: Callable[[ToolContext], Any] | None = None
    after_each_tool: Callable[[ToolContext], Any] | None = None
    on_tool_error: Callable[[ToolContext], Any] | None = None
    on_retryable_model_error: Callable[[ModelErrorContext], Any] | None = None
    on_unrecoverable_model_error: Callable[[ModelErrorContext], Any] | None = None


HOOK_NAMES: tuple[str, ...] = tuple(f.name for f in fields(Hooks))

HooksInput = Union[Hooks, Mapping[str, Any], None]


class HookRunner:
    """Dispatch hook slots, treating absent slots as no-ops."""

    def __init__(self, hooks: HooksInput = None) -> None:
        if isinstance(hooks, Mapping):
            unknown = set(hooks) - set(HOOK_NAMES)
            if unknown:
                raise ConfigurationError(
                    f"Unknown hook(s): {', '.join(sorted(unknown))}",
                    hint=f"Supported hooks: {', '.join(HOOK_NAMES)}",
                )
            hooks = Hooks(**hooks)
        self.hooks = hooks or Hooks()

    async def run(self, name: str, context: Any) -> Any:
        """Invoke the hook in slot *name* with *context* if one is set."""
        hook = getattr(self.hooks, name)
        if hook is None:
            return None
        return await resolve_value(hook(context))

    async def before_each_model_request(self, context: ModelRequestContext) -> Any:
        return await self.run("before_each_model_request", context)

    async def after_each_model_response(self, context: ModelResponseContext) -> Any:
        return await self.run("after_each_model_response", context)

    async def before_each_tool(self, context: ToolContext) -> Any:
        return await self.run("before_each_tool", context)

    async def after_each_tool(self, context: ToolContext) -> Any:
        return await self.run("after_each_tool", context)

    async def on_tool_error(self, context: ToolContext) -> Any:
        return await self.run("on_tool_error", context)

    async def on_retryable_model_error(self, context: ModelErrorContext) -> Any:
        return await self.run("on_retryable_model_error", context)

    async def on_unrecoverable_model_error(self, context: ModelErrorContext) -> Any:
        return await self.run("on_unrecoverable_model_error", context)
