"""Per-call options for operate and stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel

from conduit.config import FallbackConfig, normalize_fallback
from conduit.constants import DEFAULT_MAX_TURNS, MAX_TURNS_ABSOLUTE_LIMIT
from conduit.errors import ConfigurationError
from conduit.hooks import Hooks, HooksInput
from conduit.tools import Tool, Toolkit

FormatInput = Union[dict[str, Any], type[BaseModel], list[Any], type]
TurnsInput = Union[bool, int, None]


@dataclass(frozen=True)
class OperateOptions:
    """Optional features for a single ``operate()``/``stream()`` call."""

    #: Placeholder values substituted into ``{{key}}`` markers.
    data: dict[str, Any] | None = None
    #: Ask the model to explain each tool call (adds ``__Explanation``).
    explain: bool = False
    #: JSON schema, natural schema, or Pydantic model for structured output.
    format: FormatInput | None = None
    #: Prior conversation, prepended to the input.
    history: list[Any] | None = None
    hooks: HooksInput = None
    #: Appended to the last message (or sent natively where supported).
    instructions: str | None = None
    model: str | None = None
    placeholders: bool = True
    #: Merged into the vendor request verbatim.
    provider_options: dict[str, Any] = field(default_factory=dict)
    system: str | None = None
    temperature: float | None = None
    tools: Toolkit | list[Tool] | None = None
    #: None/True for the default limit, an int for a specific limit, False to disable.
    turns: TurnsInput = None
    user: str | None = None
    #: False disables the fallback chain; a list overrides it for this call.
    fallback: list[FallbackConfig | dict[str, Any]] | bool | None = None

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        for name in ("system", "instructions", "user", "model"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(
                    f"{name} must be a string",
                    hint=f"Pass {name}='...'.",
                )

        if self.data is not None and not isinstance(self.data, dict):
            raise ConfigurationError(
                "data must be a dict of placeholder values",
                hint="Pass data={'name': 'Ada'} to fill {{name}}.",
            )

        if self.history is not None and not isinstance(self.history, list):
            raise ConfigurationError(
                "history must be a list of history items",
                hint="Pass the history from a previous OperateResponse.",
            )

        if self.hooks is not None and not isinstance(self.hooks, (Hooks, dict)):
            raise ConfigurationError(
                "hooks must be a Hooks instance or a dict of callables",
            )

        if self.tools is not None and not isinstance(self.tools, (Toolkit, list)):
            raise ConfigurationError(
                "tools must be a Toolkit or a list of Tool objects",
                hint="Pass tools=[Tool(name=..., description=..., parameters=..., call=...)].",
            )

        if self.turns is not None and not isinstance(self.turns, (bool, int)):
            raise ConfigurationError(
                "turns must be a bool or an int",
                hint="Use turns=False to disable tool turns or turns=5 to cap them.",
            )

        if not isinstance(self.provider_options, dict):
            raise ConfigurationError("provider_options must be a dict")

        if self.fallback is True:
            raise ConfigurationError(
                "fallback=True is ambiguous",
                hint="Pass a list of FallbackConfig to override, or False to disable.",
            )
        if isinstance(self.fallback, list):
            normalize_fallback(self.fallback)

    def toolkit(self) -> Toolkit | None:
        """Return tools as a Toolkit (or None when no tools were given)."""
        if self.tools is None:
            return None
        if isinstance(self.tools, Toolkit):
            return self.tools
        if not self.tools:
            return None
        return Toolkit(self.tools, explain=self.explain)

    def max_turns(self) -> int:
        return resolve_max_turns(self.turns)


def resolve_max_turns(turns: TurnsInput = None) -> int:
    """Map the ``turns`` option to a concrete turn limit.

    None or True give the default; positive ints are clamped to the absolute
    limit; False, zero, and negatives give a single turn.
    """
    if turns is None or turns is True:
        return DEFAULT_MAX_TURNS
    if turns is False:
        return 1
    if turns > 0:
        return min(turns, MAX_TURNS_ABSOLUTE_LIMIT)
    return 1
