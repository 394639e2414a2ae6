"""OpenRouter adapter (OpenAI-compatible chat completions)."""

from __future__ import annotations

from copy import deepcopy
from typing import TYPE_CHECKING, Any

from conduit._http import OPENROUTER_RETRYABLE_STATUS_CODES, RATE_LIMIT_STATUS_CODE
from conduit.constants import (
    OPENROUTER,
    OPENROUTER_BASE_URL,
    PROVIDER_MODELS,
    RATE_LIMIT_SUGGESTED_DELAY_MS,
    STRUCTURED_OUTPUT_TOOL_NAME,
)
from conduit.errors import ConfigurationError
from conduit.providers._errors import (
    classify_common,
    extract_status_code,
    rate_limited,
    retryable,
    unknown,
    unrecoverable,
)
from conduit.providers._utils import get_field, parse_json
from conduit.providers.base import BaseProviderAdapter, content_text
from conduit.types import (
    DoneChunk,
    HistoryItem,
    Message,
    ParsedResponse,
    StandardToolCall,
    StandardToolResult,
    TextChunk,
    ToolCall,
    ToolCallChunk,
    ToolResult,
    UsageItem,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from conduit.tools import Toolkit
    from conduit.types import ClassifiedError, OperateRequest, StreamChunk

_RATE_LIMIT_PHRASES = ("rate limit", "too many requests")


class OpenRouterAdapter(BaseProviderAdapter):
    """OpenRouter chat completions adapter.

    OpenRouter has no portable native structured output, so the
    ``structured_output`` virtual tool is used with ``tool_choice="required"``.
    """

    name = OPENROUTER
    default_model = PROVIDER_MODELS[OPENROUTER]["default"]
    structured_output_description = (
        "REQUIRED: You MUST call this tool to provide your final response. "
        "After gathering all necessary information (including results from "
        "other tools), call this tool with the structured data to complete "
        "the request."
    )

    def create_client(self, api_key: str) -> Any:
        """Build an ``AsyncOpenAI`` client pointed at OpenRouter."""
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ConfigurationError(
                "openai package not installed",
                hint="pip install openai",
            ) from e
        return AsyncOpenAI(api_key=api_key, base_url=OPENROUTER_BASE_URL)

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": request.model, "messages": []}
        has_system = any(
            isinstance(m, Message) and m.role == "system" for m in request.messages
        )
        if request.system and not has_system:
            payload["messages"].append({"role": "system", "content": request.system})
        self._append_history_items(payload, request.messages)
        if request.instructions:
            _append_instructions(payload["messages"], request.instructions)

        if request.user:
            payload["user"] = request.user
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.tools:
            payload["tools"] = deepcopy(request.tools)
            forced = any(
                get_field(t.get("function"), "name") == STRUCTURED_OUTPUT_TOOL_NAME
                for t in request.tools
            )
            payload["tool_choice"] = "required" if forced else "auto"
        payload.update(deepcopy(request.provider_options))
        return payload

    def _append_history_items(
        self, request: dict[str, Any], items: list[HistoryItem]
    ) -> None:
        messages: list[dict[str, Any]] = request["messages"]
        for item in items:
            if isinstance(item, ToolCall):
                tool_call = {
                    "id": item.id,
                    "type": "function",
                    "function": {"name": item.name, "arguments": item.arguments},
                }
                last = messages[-1] if messages else None
                if last is not None and last["role"] == "assistant":
                    last.setdefault("tool_calls", []).append(tool_call)
                else:
                    messages.append(
                        {"role": "assistant", "content": None, "tool_calls": [tool_call]}
                    )
            elif isinstance(item, ToolResult):
                messages.append(self.format_tool_result_item(item))
            elif isinstance(item, Message):
                if item.role in ("system", "developer"):
                    messages.append({"role": "system", "content": content_text(item.content)})
                elif item.role == "assistant":
                    messages.append(
                        {"role": "assistant", "content": content_text(item.content)}
                    )
                else:
                    messages.append(
                        {"role": "user", "content": _normalize_content(item.content)}
                    )

    def format_tools(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("parameters") or {"type": "object"},
                },
            }
            for t in self.tool_definitions(toolkit, output_schema)
        ]

    def format_tool_result(
        self, tool_call: StandardToolCall, result: StandardToolResult
    ) -> dict[str, Any]:
        return self.format_tool_result_item(result.to_history_item())

    @staticmethod
    def format_tool_result_item(item: ToolResult) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": item.id, "content": item.output}

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        return await client.chat.completions.create(**request)

    async def execute_stream_request(
        self, client: Any, request: dict[str, Any]
    ) -> AsyncIterator[StreamChunk]:
        """Buffer tool-call fragments by index; emit them on ``finish_reason``."""
        stream = await client.chat.completions.create(
            **request, stream=True, stream_options={"include_usage": True}
        )
        model = request.get("model")
        usage_item: UsageItem | None = None
        pending: dict[int, dict[str, str]] = {}

        async for chunk in stream:
            model = get_field(chunk, "model") or model
            if get_field(chunk, "usage") is not None:
                usage_item = self.extract_usage(chunk, model or "")
            for choice in get_field(chunk, "choices") or []:
                delta = get_field(choice, "delta")
                text = get_field(delta, "content")
                if text:
                    yield TextChunk(content=text)
                for fragment in get_field(delta, "tool_calls") or []:
                    index = get_field(fragment, "index", 0)
                    buffered = pending.setdefault(
                        index, {"id": "", "name": "", "arguments": ""}
                    )
                    if get_field(fragment, "id"):
                        buffered["id"] = get_field(fragment, "id")
                    function = get_field(fragment, "function")
                    if get_field(function, "name"):
                        buffered["name"] = get_field(function, "name")
                    buffered["arguments"] += get_field(function, "arguments") or ""
                if get_field(choice, "finish_reason") and pending:
                    for index in sorted(pending):
                        buffered = pending[index]
                        yield ToolCallChunk(
                            tool_call=StandardToolCall(
                                call_id=buffered["id"],
                                name=buffered["name"],
                                arguments=buffered["arguments"] or "{}",
                                raw=dict(buffered),
                            )
                        )
                    pending.clear()

        yield DoneChunk(
            usage=[usage_item or UsageItem(provider=self.name, model=model)]
        )

    # -------------------------------------------------------------------------
    # Response
    # -------------------------------------------------------------------------

    def parse_response(self, raw: Any, options: Any = None) -> ParsedResponse:
        if self.has_structured_output(raw):
            content: Any = self.extract_structured_output(raw)
        else:
            content = get_field(_message(raw), "content")
        return ParsedResponse(
            content=content,
            has_tool_calls=bool(_tool_calls(raw)),
            stop_reason=get_field(_choice(raw), "finish_reason"),
            usage=self.extract_usage(raw, get_field(raw, "model") or ""),
            raw=raw,
        )

    def extract_tool_calls(self, raw: Any) -> list[StandardToolCall]:
        calls: list[StandardToolCall] = []
        for tool_call in _tool_calls(raw):
            function = get_field(tool_call, "function")
            calls.append(
                StandardToolCall(
                    call_id=get_field(tool_call, "id", ""),
                    name=get_field(function, "name", ""),
                    arguments=get_field(function, "arguments") or "{}",
                    raw=tool_call,
                )
            )
        return calls

    def extract_usage(self, raw: Any, model: str) -> UsageItem:
        usage = get_field(raw, "usage")
        details = get_field(usage, "completion_tokens_details")
        return UsageItem(
            input=int(get_field(usage, "prompt_tokens") or 0),
            output=int(get_field(usage, "completion_tokens") or 0),
            reasoning=int(get_field(details, "reasoning_tokens") or 0),
            total=int(get_field(usage, "total_tokens") or 0),
            provider=self.name,
            model=model or None,
        )

    def response_to_history_items(self, raw: Any) -> list[HistoryItem]:
        content = get_field(_message(raw), "content")
        if content:
            return [Message(role="assistant", content=content)]
        return []

    def has_structured_output(self, raw: Any) -> bool:
        calls = _tool_calls(raw)
        if not calls:
            return False
        return get_field(get_field(calls[-1], "function"), "name") == (
            STRUCTURED_OUTPUT_TOOL_NAME
        )

    def extract_structured_output(self, raw: Any) -> dict[str, Any] | None:
        if not self.has_structured_output(raw):
            return None
        parsed = parse_json(get_field(get_field(_tool_calls(raw)[-1], "function"), "arguments"))
        return parsed if isinstance(parsed, dict) else None

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    def classify_error(self, error: BaseException) -> ClassifiedError:
        common = classify_common(error)
        if common is not None:
            return common

        status = extract_status_code(error)
        if status == RATE_LIMIT_STATUS_CODE:
            return rate_limited(error, RATE_LIMIT_SUGGESTED_DELAY_MS)
        if status in OPENROUTER_RETRYABLE_STATUS_CODES:
            return retryable(error)
        if status is not None and 400 <= status < 500:
            return unrecoverable(error)

        message = str(error).lower()
        if any(phrase in message for phrase in _RATE_LIMIT_PHRASES):
            return rate_limited(error, RATE_LIMIT_SUGGESTED_DELAY_MS)
        return unknown(error, provider=self.name)


def _choice(raw: Any) -> Any:
    choices = get_field(raw, "choices") or []
    return choices[0] if choices else None


def _message(raw: Any) -> Any:
    return get_field(_choice(raw), "message")


def _tool_calls(raw: Any) -> list[Any]:
    return list(get_field(_message(raw), "tool_calls") or [])


def _normalize_content(content: Any) -> str | list[dict[str, Any]]:
    """Convert message content parts into chat-completions parts."""
    if isinstance(content, str):
        return content
    parts: list[dict[str, Any]] = []
    for part in content or []:
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        if part_type in ("input_text", "text"):
            parts.append({"type": "text", "text": part.get("text", "")})
        elif part_type in ("input_image", "image_url"):
            url = part.get("image_url")
            if isinstance(url, dict):
                url = url.get("url")
            if url:
                parts.append({"type": "image_url", "image_url": {"url": url}})
    return parts


def _append_instructions(messages: list[dict[str, Any]], instructions: str) -> None:
    if not messages:
        messages.append({"role": "user", "content": instructions})
        return
    last = messages[-1]
    if isinstance(last.get("content"), str):
        last["content"] = f"{last['content']}\n\n{instructions}"
    elif isinstance(last.get("content"), list):
        last["content"] = [*last["content"], {"type": "text", "text": instructions}]
