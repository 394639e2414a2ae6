"""OpenAI Responses API adapter."""

from __future__ import annotations

from copy import deepcopy
from typing import TYPE_CHECKING, Any

from conduit.constants import OPENAI, PROVIDER_MODELS
from conduit.errors import BadGatewayError, ConfigurationError
from conduit.providers._errors import (
    classify_common,
    error_class_names,
    extract_status_code,
    rate_limited,
    retryable,
    unknown,
    unrecoverable,
)
from conduit.providers._schema import to_json_schema
from conduit.providers._utils import get_field, parse_json, to_strict_schema
from conduit.providers.base import BaseProviderAdapter, format_requested
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
_RETRYABLE_ERRORS = {"APIConnectionError", "APITimeoutError", "InternalServerError"}
_UNRECOVERABLE_ERRORS = {
    "AuthenticationError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "PermissionDeniedError",
    "UnprocessableEntityError",
}


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Responses API adapter.

    Structured output uses the native ``text.format`` JSON schema, so no
    virtual tool is injected.
    """

    name = OPENAI
    default_model = PROVIDER_MODELS[OPENAI]["default"]
    uses_structured_output_tool = False

    def create_client(self, api_key: str) -> Any:
        """Build an ``AsyncOpenAI`` client (imported lazily)."""
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ConfigurationError(
                "openai package not installed",
                hint="pip install openai",
            ) from e
        return AsyncOpenAI(api_key=api_key)

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": request.model, "input": []}
        self._append_history_items(payload, request.messages)
        if request.instructions:
            payload["instructions"] = request.instructions
        if request.user:
            payload["user"] = request.user
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.tools:
            payload["tools"] = deepcopy(request.tools)
        if request.format:
            payload["text"] = {"format": deepcopy(request.format)}
        payload.update(deepcopy(request.provider_options))
        return payload

    def _append_history_items(
        self, request: dict[str, Any], items: list[HistoryItem]
    ) -> None:
        input_items: list[dict[str, Any]] = request["input"]
        for item in items:
            if isinstance(item, ToolCall):
                input_items.append(
                    {
                        "type": "function_call",
                        "call_id": item.id,
                        "name": item.name,
                        "arguments": item.arguments,
                    }
                )
            elif isinstance(item, ToolResult):
                input_items.append(self.format_tool_result_item(item))
            elif isinstance(item, Reasoning):
                if item.id:
                    input_items.append(
                        {
                            "type": "reasoning",
                            "id": item.id,
                            "summary": (
                                [{"type": "summary_text", "text": item.content}]
                                if item.content
                                else []
                            ),
                        }
                    )
            elif isinstance(item, Message):
                input_items.append({"role": item.role, "content": deepcopy(item.content)})

    def format_tools(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("parameters") or {"type": "object"},
                "strict": False,
            }
            for t in self.tool_definitions(toolkit, output_schema)
        ]

    def format_output_schema(self, schema: Any) -> dict[str, Any]:
        name = "response"
        if isinstance(schema, dict) and schema.get("type") == "json_schema":
            name = schema.get("name") or name
        return {
            "type": "json_schema",
            "name": name,
            "schema": to_strict_schema(to_json_schema(schema)),
            "strict": True,
        }

    def format_tool_result(
        self, tool_call: StandardToolCall, result: StandardToolResult
    ) -> dict[str, Any]:
        return self.format_tool_result_item(result.to_history_item())

    @staticmethod
    def format_tool_result_item(item: ToolResult) -> dict[str, Any]:
        return {
            "type": "function_call_output",
            "call_id": item.id,
            "output": item.output,
        }

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        return await client.responses.create(**request)

    async def execute_stream_request(
        self, client: Any, request: dict[str, Any]
    ) -> AsyncIterator[StreamChunk]:
        """Translate Responses API stream events into stream chunks."""
        stream = await client.responses.create(**{**request, "stream": True})
        model = request.get("model")
        usage_item: UsageItem | None = None
        pending: dict[str, dict[str, str]] = {}

        async for event in stream:
            event_type = get_field(event, "type")
            if event_type == "response.output_text.delta":
                delta = get_field(event, "delta")
                if delta:
                    yield TextChunk(content=delta)
            elif event_type == "response.output_item.added":
                item = get_field(event, "item")
                if get_field(item, "type") == "function_call":
                    pending[get_field(item, "id") or get_field(item, "call_id")] = {
                        "call_id": get_field(item, "call_id", ""),
                        "name": get_field(item, "name", ""),
                        "arguments": get_field(item, "arguments") or "",
                    }
            elif event_type == "response.function_call_arguments.delta":
                buffered = pending.get(get_field(event, "item_id"))
                if buffered is not None:
                    buffered["arguments"] += get_field(event, "delta") or ""
            elif event_type == "response.output_item.done":
                item = get_field(event, "item")
                if get_field(item, "type") == "function_call":
                    key = get_field(item, "id") or get_field(item, "call_id")
                    buffered = pending.pop(key, {})
                    yield ToolCallChunk(
                        tool_call=StandardToolCall(
                            call_id=get_field(item, "call_id") or buffered.get("call_id", ""),
                            name=get_field(item, "name") or buffered.get("name", ""),
                            arguments=get_field(item, "arguments")
                            or buffered.get("arguments")
                            or "{}",
                            raw=item,
                        )
                    )
            elif event_type == "response.completed":
                response = get_field(event, "response")
                model = get_field(response, "model") or model
                usage_item = self.extract_usage(response, model or "")
            elif event_type in ("error", "response.failed"):
                error = get_field(get_field(event, "response"), "error") or event
                raise BadGatewayError(
                    str(get_field(error, "message") or "OpenAI stream failed"),
                    provider=self.name,
                    phase="stream",
                )

        yield DoneChunk(
            usage=[usage_item or UsageItem(provider=self.name, model=model)]
        )

    # -------------------------------------------------------------------------
    # Response
    # -------------------------------------------------------------------------

    def parse_response(self, raw: Any, options: Any = None) -> ParsedResponse:
        text = _output_text(raw)
        content: Any = text
        if format_requested(options):
            parsed = parse_json(text)
            if parsed is not None:
                content = parsed
        return ParsedResponse(
            content=content,
            has_tool_calls=bool(self.extract_tool_calls(raw)),
            stop_reason=get_field(raw, "status"),
            usage=self.extract_usage(raw, get_field(raw, "model") or ""),
            raw=raw,
        )

    def extract_tool_calls(self, raw: Any) -> list[StandardToolCall]:
        return [
            StandardToolCall(
                call_id=get_field(item, "call_id") or get_field(item, "id", ""),
                name=get_field(item, "name", ""),
                arguments=get_field(item, "arguments") or "{}",
                raw=item,
            )
            for item in _output(raw)
            if get_field(item, "type") == "function_call"
        ]

    def extract_usage(self, raw: Any, model: str) -> UsageItem:
        usage = get_field(raw, "usage")
        input_tokens = int(get_field(usage, "input_tokens") or 0)
        output_tokens = int(get_field(usage, "output_tokens") or 0)
        details = get_field(usage, "output_tokens_details")
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            reasoning=int(get_field(details, "reasoning_tokens") or 0),
            total=int(get_field(usage, "total_tokens") or input_tokens + output_tokens),
            provider=self.name,
            model=model or None,
        )

    def response_to_history_items(self, raw: Any) -> list[HistoryItem]:
        items: list[HistoryItem] = []
        for item in _output(raw):
            item_type = get_field(item, "type")
            if item_type == "reasoning":
                summary = get_field(item, "summary") or []
                text = "\n".join(
                    get_field(s, "text", "") for s in summary if get_field(s, "text")
                )
                items.append(Reasoning(id=get_field(item, "id"), content=text or None))
            elif item_type == "message":
                text = _message_text(item)
                if text:
                    items.append(Message(role="assistant", content=text))
        return items

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    def classify_error(self, error: BaseException) -> ClassifiedError:
        names = error_class_names(error)
        if names & _RATE_LIMIT_ERRORS:
            return rate_limited(error)
        if names & _RETRYABLE_ERRORS:
            return retryable(error)
        if names & _UNRECOVERABLE_ERRORS:
            return unrecoverable(error)

        common = classify_common(error)
        if common is not None:
            return common

        status = extract_status_code(error)
        if status == 429:
            return rate_limited(error)
        if status is not None and status >= 500:
            return retryable(error)
        if status is not None and 400 <= status < 500:
            return unrecoverable(error)
        return unknown(error, provider=self.name)


def _output(raw: Any) -> list[Any]:
    return list(get_field(raw, "output") or [])


def _message_text(item: Any) -> str:
    return "".join(
        get_field(part, "text", "")
        for part in get_field(item, "content") or []
        if get_field(part, "type") == "output_text"
    )


def _output_text(raw: Any) -> str:
    return "".join(
        _message_text(item)
        for item in _output(raw)
        if get_field(item, "type") == "message"
    )
