"""Anthropic Messages API adapter."""

from __future__ import annotations

from copy import deepcopy
import re
from typing import TYPE_CHECKING, Any

from conduit.constants import (
    ANTHROPIC,
    ANTHROPIC_MAX_TOKENS,
    PROVIDER_MODELS,
    RATE_LIMIT_SUGGESTED_DELAY_MS,
    STRUCTURED_OUTPUT_TOOL_NAME,
)
from conduit.errors import ConfigurationError
from conduit.providers._errors import (
    classify_common,
    error_class_names,
    extract_status_code,
    rate_limited,
    retryable,
    unknown,
    unrecoverable,
)
from conduit.providers._utils import dumps_arguments, get_field, parse_json
from conduit.providers.base import BaseProviderAdapter, format_requested, split_system
from conduit.types import (
    DoneChunk,
    HistoryItem,
    Message,
    ParsedResponse,
    Reasoning,
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

_RATE_LIMIT_ERRORS = {"RateLimitError"}
_RETRYABLE_ERRORS = {
    "APIConnectionError",
    "APITimeoutError",
    "InternalServerError",
    "OverloadedError",
}
_UNRECOVERABLE_ERRORS = {
    "AuthenticationError",
    "BadRequestError",
    "NotFoundError",
    "PermissionDeniedError",
    "UnprocessableEntityError",
}

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.S)


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter.

    Structured output uses the ``structured_output`` virtual tool with
    ``tool_choice={"type": "any"}`` so the model must call it.
    """

    name = ANTHROPIC
    default_model = PROVIDER_MODELS[ANTHROPIC]["default"]

    def create_client(self, api_key: str) -> Any:
        """Build an ``AsyncAnthropic`` client (imported lazily)."""
        try:
            from anthropic import AsyncAnthropic
        except ImportError as e:
            raise ConfigurationError(
                "anthropic package not installed",
                hint="pip install anthropic",
            ) from e
        return AsyncAnthropic(api_key=api_key)

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        system, items = split_system(request.messages, request.system)
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [],
            "max_tokens": ANTHROPIC_MAX_TOKENS,
        }
        self._append_history_items(payload, items)
        if request.instructions:
            _append_instructions(payload["messages"], request.instructions)

        if system:
            payload["system"] = system
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.user:
            payload["metadata"] = {"user_id": request.user}
        if request.tools:
            payload["tools"] = deepcopy(request.tools)
            forced = any(
                t.get("name") == STRUCTURED_OUTPUT_TOOL_NAME for t in request.tools
            )
            payload["tool_choice"] = {"type": "any" if forced else "auto"}
        payload.update(deepcopy(request.provider_options))
        return payload

    def _append_history_items(
        self, request: dict[str, Any], items: list[HistoryItem]
    ) -> None:
        messages: list[dict[str, Any]] = request["messages"]
        for item in items:
            if isinstance(item, ToolCall):
                _append_message(
                    messages,
                    {
                        "role": "assistant",
                        "content": [
                            {
                                "type": "tool_use",
                                "id": item.id,
                                "name": item.name,
                                "input": parse_json(item.arguments) or {},
                            }
                        ],
                    },
                )
            elif isinstance(item, ToolResult):
                _append_message(messages, self.format_tool_result_item(item))
            elif isinstance(item, Message):
                role = "assistant" if item.role == "assistant" else "user"
                content = _normalize_content(item.content)
                if not content:
                    continue
                _append_message(messages, {"role": role, "content": content})
            # Reasoning cannot be replayed without Anthropic's signatures.

    def format_tools(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "input_schema": {**(t.get("parameters") or {}), "type": "object"},
            }
            for t in self.tool_definitions(toolkit, output_schema)
        ]

    def format_output_schema(self, schema: Any) -> dict[str, Any]:
        formatted = super().format_output_schema(schema)
        formatted["type"] = "object"
        return formatted

    def format_tool_result(
        self, tool_call: StandardToolCall, result: StandardToolResult
    ) -> dict[str, Any]:
        return self.format_tool_result_item(result.to_history_item())

    @staticmethod
    def format_tool_result_item(item: ToolResult) -> dict[str, Any]:
        return {
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": item.id,
                    "content": item.output,
                }
            ],
        }

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        return await client.messages.create(**request)

    async def execute_stream_request(
        self, client: Any, request: dict[str, Any]
    ) -> AsyncIterator[StreamChunk]:
        """Translate Anthropic SSE events into stream chunks."""
        stream = await client.messages.create(**{**request, "stream": True})
        model = request.get("model")
        input_tokens = 0
        output_tokens = 0
        pending: dict[str, Any] | None = None

        async for event in stream:
            event_type = get_field(event, "type")
            if event_type == "message_start":
                message = get_field(event, "message")
                model = get_field(message, "model") or model
                input_tokens = get_field(get_field(message, "usage"), "input_tokens") or 0
            elif event_type == "content_block_start":
                block = get_field(event, "content_block")
                if get_field(block, "type") == "tool_use":
                    pending = {
                        "id": get_field(block, "id", ""),
                        "name": get_field(block, "name", ""),
                        "arguments": "",
                    }
            elif event_type == "content_block_delta":
                delta = get_field(event, "delta")
                delta_type = get_field(delta, "type")
                if delta_type == "text_delta":
                    text = get_field(delta, "text")
                    if text:
                        yield TextChunk(content=text)
                elif delta_type == "input_json_delta" and pending is not None:
                    pending["arguments"] += get_field(delta, "partial_json") or ""
            elif event_type == "content_block_stop":
                if pending is not None:
                    yield ToolCallChunk(
                        tool_call=StandardToolCall(
                            call_id=pending["id"],
                            name=pending["name"],
                            arguments=pending["arguments"] or "{}",
                            raw=dict(pending),
                        )
                    )
                    pending = None
            elif event_type == "message_delta":
                usage = get_field(event, "usage")
                output_tokens = get_field(usage, "output_tokens") or output_tokens

        yield DoneChunk(
            usage=[
                UsageItem(
                    input=input_tokens,
                    output=output_tokens,
                    total=input_tokens + output_tokens,
                    provider=self.name,
                    model=model,
                )
            ]
        )

    # -------------------------------------------------------------------------
    # Response
    # -------------------------------------------------------------------------

    def parse_response(self, raw: Any, options: Any = None) -> ParsedResponse:
        texts = [
            get_field(b, "text", "")
            for b in _blocks(raw)
            if get_field(b, "type") == "text"
        ]
        content: Any = "\n\n".join(t for t in texts if t)
        if format_requested(options) and self.has_structured_output(raw):
            content = self.extract_structured_output(raw)
        return ParsedResponse(
            content=content,
            has_tool_calls=bool(self.extract_tool_calls(raw)),
            stop_reason=get_field(raw, "stop_reason"),
            usage=self.extract_usage(raw, get_field(raw, "model") or ""),
            raw=raw,
        )

    def extract_tool_calls(self, raw: Any) -> list[StandardToolCall]:
        return [
            StandardToolCall(
                call_id=get_field(b, "id", ""),
                name=get_field(b, "name", ""),
                arguments=dumps_arguments(get_field(b, "input", {})),
                raw=b,
            )
            for b in _blocks(raw)
            if get_field(b, "type") == "tool_use"
        ]

    def extract_usage(self, raw: Any, model: str) -> UsageItem:
        usage = get_field(raw, "usage")
        input_tokens = int(get_field(usage, "input_tokens") or 0)
        output_tokens = int(get_field(usage, "output_tokens") or 0)
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            reasoning=int(get_field(usage, "thinking_tokens") or 0),
            total=input_tokens + output_tokens,
            provider=self.name,
            model=model or None,
        )

    def response_to_history_items(self, raw: Any) -> list[HistoryItem]:
        items: list[HistoryItem] = []
        texts: list[str] = []
        for block in _blocks(raw):
            block_type = get_field(block, "type")
            if block_type == "thinking" and get_field(block, "thinking"):
                items.append(Reasoning(content=get_field(block, "thinking")))
            elif block_type == "text" and get_field(block, "text"):
                texts.append(get_field(block, "text"))
        if texts:
            items.append(Message(role="assistant", content="\n\n".join(texts)))
        return items

    def is_complete(self, raw: Any) -> bool:
        return get_field(raw, "stop_reason") != "tool_use"

    def has_structured_output(self, raw: Any) -> bool:
        blocks = _blocks(raw)
        if not blocks:
            return False
        last = blocks[-1]
        return (
            get_field(last, "type") == "tool_use"
            and get_field(last, "name") == STRUCTURED_OUTPUT_TOOL_NAME
        )

    def extract_structured_output(self, raw: Any) -> dict[str, Any] | None:
        if not self.has_structured_output(raw):
            return None
        data = get_field(_blocks(raw)[-1], "input")
        if isinstance(data, str):
            data = parse_json(data)
        return data if isinstance(data, dict) else None

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    def classify_error(self, error: BaseException) -> ClassifiedError:
        names = error_class_names(error)
        if names & _RATE_LIMIT_ERRORS:
            return rate_limited(error, RATE_LIMIT_SUGGESTED_DELAY_MS)
        if names & _RETRYABLE_ERRORS:
            return retryable(error)
        if names & _UNRECOVERABLE_ERRORS:
            return unrecoverable(error)

        common = classify_common(error)
        if common is not None:
            return common

        status = extract_status_code(error)
        if status == 429:
            return rate_limited(error, RATE_LIMIT_SUGGESTED_DELAY_MS)
        if status is not None and status >= 500:
            return retryable(error)
        if status is not None and 400 <= status < 500:
            return unrecoverable(error)
        return unknown(error, provider=self.name)


def _blocks(raw: Any) -> list[Any]:
    return list(get_field(raw, "content") or [])


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so consecutive
    same-role messages (a tool_result followed by a prompt, or assistant text
    followed by a tool_use) become one message with concatenated blocks.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)


def _append_instructions(messages: list[dict[str, Any]], instructions: str) -> None:
    if not messages:
        messages.append({"role": "user", "content": instructions})
        return
    last = messages[-1]
    if isinstance(last["content"], str):
        last["content"] = f"{last['content']}\n\n{instructions}"
    else:
        last["content"] = [*last["content"], {"type": "text", "text": instructions}]


def _normalize_content(content: Any) -> str | list[dict[str, Any]]:
    """Convert message content into Anthropic text/image blocks."""
    if isinstance(content, str):
        return content
    blocks: list[dict[str, Any]] = []
    for part in content or []:
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        if part_type in ("input_text", "text"):
            if part.get("text"):
                blocks.append({"type": "text", "text": part["text"]})
        elif part_type == "input_image":
            url = part.get("image_url") or part.get("url") or ""
            match = _DATA_URL_RE.match(url)
            if match:
                source = {
                    "type": "base64",
                    "media_type": match.group("mime"),
                    "data": match.group("data"),
                }
            else:
                source = {"type": "url", "url": url}
            blocks.append({"type": "image", "source": source})
        else:
            blocks.append(dict(part))
    return blocks
