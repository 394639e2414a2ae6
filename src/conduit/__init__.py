"""Conduit: a provider-agnostic operate loop for LLM APIs.

Public API:
    - Llm: provider/model resolution, fallback chain, operate/stream/send
    - operate(): one-off buffered call
    - stream(): one-off streaming call
    - Tool, Toolkit: caller-defined tools
    - Hooks, RetryPolicy, OperateOptions: per-call and per-instance controls
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from conduit.config import Config, FallbackConfig
from conduit.errors import (
    APIError,
    BadGatewayError,
    ConduitError,
    ConfigurationError,
    RateLimitError,
    ToolArgumentsError,
    ToolError,
    TooManyTurnsError,
    UnknownToolError,
)
from conduit.hooks import (
    Hooks,
    ModelErrorContext,
    ModelRequestContext,
    ModelResponseContext,
    ToolContext,
)
from conduit.llm import Llm
from conduit.loop import OperateLoop
from conduit.options import OperateOptions
from conduit.registry import determine_model_provider, resolve_provider
from conduit.result import ResponseBuilder
from conduit.retry import RetryExecutor, RetryPolicy
from conduit.streaming import StreamLoop
from conduit.tools import Tool, Toolkit
from conduit.types import (
    DoneChunk,
    ErrorChunk,
    LlmError,
    Message,
    OperateResponse,
    Reasoning,
    ResponseStatus,
    TextChunk,
    ToolCall,
    ToolCallChunk,
    ToolResult,
    ToolResultChunk,
    UsageItem,
    sum_usage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from conduit.types import StreamChunk

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("conduit-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("conduit").addHandler(logging.NullHandler())


async def operate(
    input: Any,
    options: OperateOptions | None = None,
    *,
    llm: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    **kwargs: Any,
) -> OperateResponse:
    """Run one buffered operate call with a throwaway ``Llm``.

    Args:
        input: A prompt string, a history item, or a list of them.
        options: Optional ``OperateOptions``; keyword arguments override it.
        llm: Provider name (``"anthropic"``, ``"openai"``...).
        model: Model name; implies the provider when ``llm`` is omitted.

    Example:
        response = await operate("Summarize {{topic}}", llm="gemini", data={"topic": "tides"})
        print(response.content)
    """
    async with Llm(llm, model=model, api_key=api_key) as client:
        return await client.operate(input, options, **kwargs)


async def stream(
    input: Any,
    options: OperateOptions | None = None,
    *,
    llm: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    **kwargs: Any,
) -> AsyncIterator[StreamChunk]:
    """Stream one call with a throwaway ``Llm``; see :func:`operate`."""
    async with Llm(llm, model=model, api_key=api_key) as client:
        async for chunk in client.stream(input, options, **kwargs):
            yield chunk


__all__ = [
    "APIError",
    "BadGatewayError",
    "Config",
    "ConduitError",
    "ConfigurationError",
    "DoneChunk",
    "ErrorChunk",
    "FallbackConfig",
    "Hooks",
    "Llm",
    "LlmError",
    "Message",
    "ModelErrorContext",
    "ModelRequestContext",
    "ModelResponseContext",
    "OperateLoop",
    "OperateOptions",
    "OperateResponse",
    "RateLimitError",
    "Reasoning",
    "ResponseBuilder",
    "ResponseStatus",
    "RetryExecutor",
    "RetryPolicy",
    "StreamLoop",
    "TextChunk",
    "Tool",
    "ToolArgumentsError",
    "ToolCall",
    "ToolCallChunk",
    "ToolContext",
    "ToolError",
    "ToolResult",
    "ToolResultChunk",
    "Toolkit",
    "TooManyTurnsError",
    "UnknownToolError",
    "UsageItem",
    "determine_model_provider",
    "operate",
    "resolve_provider",
    "stream",
    "sum_usage",
]
