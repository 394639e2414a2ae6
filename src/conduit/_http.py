"""Small HTTP-related constants shared across Conduit.

Kept tiny to avoid circular imports between providers and core retry.
"""

from __future__ import annotations

# Gateway-ish failures every vendor treats as transient.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 500, 502, 503, 504})

# OpenRouter also surfaces Cloudflare (524) and upstream overload (529).
OPENROUTER_RETRYABLE_STATUS_CODES: frozenset[int] = RETRYABLE_STATUS_CODES | {
    524,
    529,
}

UNRECOVERABLE_STATUS_CODES: frozenset[int] = frozenset(
    {400, 401, 403, 404, 409, 422}
)

RATE_LIMIT_STATUS_CODE = 429
