"""Shared provider-side error helpers.

Adapters classify SDK exceptions by class name and HTTP status instead of
importing every SDK's exception module, so classification works even for
wrapped or re-raised errors.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from conduit.errors import APIError, _walk_exception_chain
from conduit.retry import is_transient_network_error
from conduit.types import ClassifiedError, ErrorCategory

logger = logging.getLogger(__name__)


def error_class_names(exc: BaseException) -> set[str]:
    """Names of every class in *exc*'s MRO (``RateLimitError``, ``APIError``, ...)."""
    return {cls.__name__ for cls in type(exc).__mro__}


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    The Gemini SDK exposes the parsed JSON body via ``.details`` shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        raw = headers.get("Retry-After") if hasattr(headers, "get") else None
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                seconds = None
            if seconds is not None and seconds >= 0:
                return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def rate_limited(exc: BaseException, default_delay_ms: int | None = None) -> ClassifiedError:
    retry_after = extract_retry_after_s(exc)
    delay_ms = int(retry_after * 1000) if retry_after is not None else default_delay_ms
    return ClassifiedError(
        error=exc,
        category=ErrorCategory.RATE_LIMIT,
        should_retry=False,
        suggested_delay_ms=delay_ms,
    )


def retryable(exc: BaseException) -> ClassifiedError:
    return ClassifiedError(
        error=exc, category=ErrorCategory.RETRYABLE, should_retry=True
    )


def unrecoverable(exc: BaseException) -> ClassifiedError:
    return ClassifiedError(
        error=exc, category=ErrorCategory.UNRECOVERABLE, should_retry=False
    )


def unknown(exc: BaseException, *, provider: str) -> ClassifiedError:
    """Optimistically retry unclassified errors, loudly."""
    logger.warning(
        "Unknown %s error type %s; treating as retryable: %s",
        provider,
        type(exc).__name__,
        exc,
    )
    return ClassifiedError(error=exc, category=ErrorCategory.UNKNOWN, should_retry=True)


def classify_common(exc: BaseException) -> ClassifiedError | None:
    """Classification shared by every adapter, or None to defer to the adapter.

    Our own ``APIError`` carries explicit retry metadata; transport failures
    and timeouts are always retryable.
    """
    if isinstance(exc, APIError):
        if exc.status_code == 429:
            return rate_limited(exc)
        if exc.retryable is True:
            return retryable(exc)
        if exc.retryable is False:
            return unrecoverable(exc)
    if is_transient_network_error(exc):
        return retryable(exc)
    return None
