"""Project-wide constants for Conduit."""

from __future__ import annotations

import re

# ==============================================================================
# Providers
# ==============================================================================

ANTHROPIC = "anthropic"
GEMINI = "gemini"
OPENAI = "openai"
OPENROUTER = "openrouter"

PROVIDER_NAMES: tuple[str, ...] = (ANTHROPIC, GEMINI, OPENAI, OPENROUTER)
DEFAULT_PROVIDER = OPENAI

# Known model identifiers per provider. The "default" entry is used whenever a
# provider is named without a model.
PROVIDER_MODELS: dict[str, dict[str, str]] = {
    ANTHROPIC: {
        "default": "claude-sonnet-4-5",
        "large": "claude-opus-4-1",
        "small": "claude-sonnet-4-5",
        "tiny": "claude-haiku-4-5",
    },
    GEMINI: {
        "default": "gemini-2.5-flash",
        "large": "gemini-2.5-pro",
        "small": "gemini-2.5-flash",
        "tiny": "gemini-2.5-flash-lite",
    },
    OPENAI: {
        "default": "gpt-5",
        "large": "gpt-5",
        "small": "gpt-5-mini",
        "tiny": "gpt-5-nano",
    },
    OPENROUTER: {
        "default": "openai/gpt-5-mini",
        "large": "anthropic/claude-opus-4-1",
        "small": "openai/gpt-5-mini",
        "tiny": "openai/gpt-5-nano",
    },
}

# Case-insensitive substrings (or patterns) that imply a provider.
MODEL_MATCH_WORDS: dict[str, tuple[str | re.Pattern[str], ...]] = {
    ANTHROPIC: ("anthropic", "claude", "haiku", "opus", "sonnet"),
    GEMINI: ("gemini", "google"),
    OPENAI: ("openai", "gpt", re.compile(r"^o\d")),
}

OPENROUTER_PREFIX = "openrouter:"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# ==============================================================================
# Operate loop
# ==============================================================================

DEFAULT_MAX_TURNS = 12
MAX_TURNS_ABSOLUTE_LIMIT = 72

ANTHROPIC_MAX_TOKENS = 8192

STRUCTURED_OUTPUT_TOOL_NAME = "structured_output"
EXPLANATION_PROPERTY = "__Explanation"

# ==============================================================================
# Retry
# ==============================================================================

DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 32000
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_RETRIES = 6
MAX_RETRIES_ABSOLUTE_LIMIT = 72

# Anthropic does not always send Retry-After; this is the delay we suggest.
RATE_LIMIT_SUGGESTED_DELAY_MS = 60000
