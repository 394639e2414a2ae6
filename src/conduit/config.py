"""Configuration: provider/model resolution inputs and API key lookup."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any

from dotenv import load_dotenv

from conduit.constants import ANTHROPIC, GEMINI, OPENAI, OPENROUTER, PROVIDER_NAMES
from conduit.errors import ConfigurationError
from conduit.retry import RetryPolicy

load_dotenv()

# Provider-specific API key environment variable names, in lookup order.
_API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    ANTHROPIC: ("ANTHROPIC_API_KEY",),
    GEMINI: ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    OPENAI: ("OPENAI_API_KEY",),
    OPENROUTER: ("OPENROUTER_API_KEY",),
}


def _validate_provider(provider: str) -> None:
    if provider not in PROVIDER_NAMES:
        raise ConfigurationError(
            f"Unsupported provider: {provider}",
            hint=f"Supported providers: {', '.join(PROVIDER_NAMES)}",
        )


def resolve_api_key(provider: str, api_key: str | None = None) -> str:
    """Return *api_key* or the provider's key from the environment.

    Raises:
        ConfigurationError: No key was passed and none is set in the environment.
    """
    _validate_provider(provider)
    if api_key:
        return api_key
    env_vars = _API_KEY_ENV_VARS[provider]
    for env_var in env_vars:
        value = os.environ.get(env_var)
        if value:
            return value
    raise ConfigurationError(
        f"API key required for {provider}",
        hint=f"Set {env_vars[0]} environment variable or pass api_key=...",
    )


@dataclass(frozen=True)
class FallbackConfig:
    """One alternate provider configuration in a fallback chain."""

    provider: str
    model: str | None = None
    api_key: str | None = None
    #: Prebuilt SDK client; mostly useful for tests and custom transports.
    client: Any = None

    def __post_init__(self) -> None:
        _validate_provider(self.provider)

    def __str__(self) -> str:
        return (
            f"FallbackConfig(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __repr__ = __str__


def normalize_fallback(
    fallback: list[FallbackConfig | dict[str, Any]] | tuple[Any, ...] | None,
) -> tuple[FallbackConfig, ...]:
    """Coerce a user-supplied fallback chain into ``FallbackConfig`` entries."""
    if not fallback:
        return ()
    entries: list[FallbackConfig] = []
    for item in fallback:
        if isinstance(item, FallbackConfig):
            entries.append(item)
        elif isinstance(item, dict):
            entries.append(FallbackConfig(**item))
        elif isinstance(item, str):
            entries.append(FallbackConfig(provider=item))
        else:
            raise ConfigurationError(
                f"Invalid fallback entry: {item!r}",
                hint="Use FallbackConfig(provider=..., model=...) or a dict.",
            )
    return tuple(entries)


@dataclass(frozen=True)
class Config:
    """Immutable, resolved configuration for one ``Llm`` instance.

    The API key is not required at construction; it is resolved lazily when
    the SDK client is first built, so callers can inject their own client.
    """

    provider: str
    model: str
    api_key: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    fallback: tuple[FallbackConfig, ...] = ()

    def __post_init__(self) -> None:
        _validate_provider(self.provider)
        if not isinstance(self.model, str):
            raise ConfigurationError(
                f"model must be a string, got {type(self.model).__name__}",
            )
        object.__setattr__(self, "fallback", normalize_fallback(self.fallback))

    def resolved_api_key(self) -> str:
        return resolve_api_key(self.provider, self.api_key)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"fallback={len(self.fallback)})"
        )

    __repr__ = __str__
