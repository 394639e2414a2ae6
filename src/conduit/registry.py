"""Provider registry: model/provider resolution and adapter construction."""

from __future__ import annotations

import re

from conduit.constants import (
    ANTHROPIC,
    DEFAULT_PROVIDER,
    GEMINI,
    MODEL_MATCH_WORDS,
    OPENAI,
    OPENROUTER,
    OPENROUTER_PREFIX,
    PROVIDER_MODELS,
    PROVIDER_NAMES,
)
from conduit.errors import ConfigurationError
from conduit.providers.anthropic import AnthropicAdapter
from conduit.providers.base import BaseProviderAdapter
from conduit.providers.gemini import GeminiAdapter
from conduit.providers.openai import OpenAIAdapter
from conduit.providers.openrouter import OpenRouterAdapter

_ADAPTERS: dict[str, type[BaseProviderAdapter]] = {
    ANTHROPIC: AnthropicAdapter,
    GEMINI: GeminiAdapter,
    OPENAI: OpenAIAdapter,
    OPENROUTER: OpenRouterAdapter,
}


def _matches(model: str, word: str | re.Pattern[str]) -> bool:
    if isinstance(word, re.Pattern):
        return word.search(model) is not None
    return word in model


def determine_model_provider(value: str | None = None) -> tuple[str, str | None]:
    """Resolve a model or provider name into ``(model, provider)``.

    Resolution order:

    1. Empty input gives the default provider and its default model.
    2. ``openrouter:<model>`` selects OpenRouter with the prefix stripped.
    3. A provider name gives that provider's default model.
    4. A known model identifier gives its provider.
    5. A ``vendor/model`` slug gives OpenRouter.
    6. Match words (``claude``, ``gemini``, ``gpt``, ``o1``...) imply a provider.

    Unresolvable models come back with a provider of None.
    """
    if not value:
        return PROVIDER_MODELS[DEFAULT_PROVIDER]["default"], DEFAULT_PROVIDER

    if value.lower().startswith(OPENROUTER_PREFIX):
        return value[len(OPENROUTER_PREFIX) :], OPENROUTER

    lowered = value.lower()
    if lowered in PROVIDER_NAMES:
        return PROVIDER_MODELS[lowered]["default"], lowered

    for provider, models in PROVIDER_MODELS.items():
        if value in models.values():
            return value, provider

    if "/" in value:
        return value, OPENROUTER

    for provider, words in MODEL_MATCH_WORDS.items():
        if any(_matches(lowered, word) for word in words):
            return value, provider

    return value, None


def resolve_provider(value: str) -> str:
    """Return the provider for a provider or model name.

    Raises:
        ConfigurationError: The value does not identify a supported provider.
    """
    _, provider = determine_model_provider(value)
    if provider is None:
        raise ConfigurationError(
            f"Unsupported provider: {value}",
            hint=f"Supported providers: {', '.join(PROVIDER_NAMES)}",
        )
    return provider


def resolve_model(provider: str | None, model: str | None) -> tuple[str, str]:
    """Combine an explicit provider and model into a concrete pair.

    An explicit provider wins over the one a model implies; the model then
    falls back to that provider's default.
    """
    if provider is not None:
        name = provider.lower()
        if name not in PROVIDER_NAMES:
            raise ConfigurationError(
                f"Unsupported provider: {provider}",
                hint=f"Supported providers: {', '.join(PROVIDER_NAMES)}",
            )
        if not model:
            return name, PROVIDER_MODELS[name]["default"]
        resolved, implied = determine_model_provider(model)
        if implied is not None and implied != name:
            return name, PROVIDER_MODELS[name]["default"]
        return name, resolved or PROVIDER_MODELS[name]["default"]

    resolved, implied = determine_model_provider(model)
    name = implied or DEFAULT_PROVIDER
    return name, resolved or PROVIDER_MODELS[name]["default"]


def create_adapter(provider: str) -> BaseProviderAdapter:
    """Instantiate the adapter registered for *provider*."""
    try:
        adapter_cls = _ADAPTERS[provider]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported provider: {provider}",
            hint=f"Supported providers: {', '.join(PROVIDER_NAMES)}",
        ) from None
    return adapter_cls()

