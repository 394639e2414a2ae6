"""Provider adapters."""

from .anthropic import AnthropicAdapter
from .base import BaseProviderAdapter, ProviderAdapter
from .gemini import GeminiAdapter
from .openai import OpenAIAdapter
from .openrouter import OpenRouterAdapter

__all__ = [
    "AnthropicAdapter",
    "BaseProviderAdapter",
    "GeminiAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "ProviderAdapter",
]
