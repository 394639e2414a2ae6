"""Gemini (google-genai) adapter."""

from __future__ import annotations

from copy import deepcopy
from typing import TYPE_CHECKING, Any

from conduit._http import RETRYABLE_STATUS_CODES, UNRECOVERABLE_STATUS_CODES
from conduit.constants import (
    GEMINI,
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
from conduit.providers._utils import (
    dumps_arguments,
    generate_call_id,
    get_field,
    parse_json,
)
from conduit.providers.base import (
    BaseProviderAdapter,
    content_text,
    format_requested,
    split_system,
)
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

STRUCTURED_OUTPUT_INSTRUCTION = (
    "IMPORTANT: Before providing your final response, you MUST use the "
    f"{STRUCTURED_OUTPUT_TOOL_NAME} tool to output your answer in the required "
    "JSON format."
)

_RATE_LIMIT_PHRASES = ("rate limit", "quota exceeded")
_RETRYABLE_PHRASES = ("timeout", "connection")


class GeminiAdapter(BaseProviderAdapter):
    """Google Gemini ``generate_content`` adapter.

    Gemini cannot combine function calling with a JSON response mime type,
    so structured output is native only when no tools are configured. With
    tools, the ``structured_output`` virtual tool is added and the system
    instruction tells the model to call it.
    """

    name = GEMINI
    default_model = PROVIDER_MODELS[GEMINI]["default"]

    def create_client(self, api_key: str) -> Any:
        """Build a ``google.genai.Client`` (imported lazily)."""
        try:
            from google import genai
        except ImportError as e:
            raise ConfigurationError(
                "google-genai package not installed",
                hint="pip install google-genai",
            ) from e
        return genai.Client(api_key=api_key)

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        system, items = split_system(request.messages, request.system)
        payload: dict[str, Any] = {"model": request.model, "contents": []}
        self._append_history_items(payload, items)
        if request.instructions:
            _append_instructions(payload["contents"], request.instructions)

        config: dict[str, Any] = {}
        if request.tools:
            config["tools"] = [{"function_declarations": deepcopy(request.tools)}]
            if request.format:
                system = (
                    f"{system}\n\n{STRUCTURED_OUTPUT_INSTRUCTION}"
                    if system
                    else STRUCTURED_OUTPUT_INSTRUCTION
                )
        elif request.format:
            config["response_mime_type"] = "application/json"
            config["response_json_schema"] = deepcopy(request.format)
        if system:
            config["system_instruction"] = system
        if request.temperature is not None:
            config["temperature"] = request.temperature
        config.update(deepcopy(request.provider_options))
        if config:
            payload["config"] = config
        return payload

    def _append_history_items(
        self, request: dict[str, Any], items: list[HistoryItem]
    ) -> None:
        contents: list[dict[str, Any]] = request["contents"]
        for item in items:
            if isinstance(item, ToolCall):
                _append_content(
                    contents,
                    "model",
                    {
                        "function_call": {
                            "id": item.id,
                            "name": item.name,
                            "args": parse_json(item.arguments) or {},
                        }
                    },
                )
            elif isinstance(item, ToolResult):
                _append_content(contents, "user", _function_response_part(item))
            elif isinstance(item, Message):
                text = content_text(item.content)
                if text:
                    role = "model" if item.role == "assistant" else "user"
                    _append_content(contents, role, {"text": text})

    def tool_definitions(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None
    ) -> list[dict[str, Any]]:
        if toolkit is None or not len(toolkit):
            return []
        return super().tool_definitions(toolkit, output_schema)

    def format_tools(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters_json_schema": {**t.get("parameters", {}), "type": "object"},
            }
            for t in self.tool_definitions(toolkit, output_schema)
        ]

    def format_tool_result(
        self, tool_call: StandardToolCall, result: StandardToolResult
    ) -> dict[str, Any]:
        return _function_response_part(result.to_history_item())

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        return await client.aio.models.generate_content(
            model=request["model"],
            contents=request["contents"],
            config=request.get("config"),
        )

    async def execute_stream_request(
        self, client: Any, request: dict[str, Any]
    ) -> AsyncIterator[StreamChunk]:
        """Yield text parts and whole function calls; usage from the last chunk."""
        stream = await client.aio.models.generate_content_stream(
            model=request["model"],
            contents=request["contents"],
            config=request.get("config"),
        )
        last_chunk: Any = None
        async for chunk in stream:
            last_chunk = chunk
            for part in _parts(chunk):
                if get_field(part, "thought"):
                    continue
                text = get_field(part, "text")
                if text:
                    yield TextChunk(content=text)
                call = get_field(part, "function_call")
                if call is not None:
                    yield ToolCallChunk(tool_call=_standard_call(call, part))

        usage = (
            self.extract_usage(last_chunk, request["model"])
            if last_chunk is not None
            else UsageItem(provider=self.name, model=request["model"])
        )
        yield DoneChunk(usage=[usage])

    # -------------------------------------------------------------------------
    # Response
    # -------------------------------------------------------------------------

    def parse_response(self, raw: Any, options: Any = None) -> ParsedResponse:
        content: Any = None
        if self.has_structured_output(raw):
            content = self.extract_structured_output(raw)
        else:
            text = _text(raw)
            content = text or None
            if text and format_requested(options):
                parsed = parse_json(text)
                if parsed is not None:
                    content = parsed
        return ParsedResponse(
            content=content,
            has_tool_calls=any(
                get_field(p, "function_call") is not None for p in _parts(raw)
            ),
            stop_reason=_finish_reason(raw),
            usage=self.extract_usage(raw, get_field(raw, "model_version") or ""),
            raw=raw,
        )

    def extract_tool_calls(self, raw: Any) -> list[StandardToolCall]:
        return [
            _standard_call(get_field(part, "function_call"), part)
            for part in _parts(raw)
            if get_field(part, "function_call") is not None
        ]

    def extract_usage(self, raw: Any, model: str) -> UsageItem:
        usage = get_field(raw, "usage_metadata")
        return UsageItem(
            input=int(get_field(usage, "prompt_token_count") or 0),
            output=int(get_field(usage, "candidates_token_count") or 0),
            reasoning=int(get_field(usage, "thoughts_token_count") or 0),
            total=int(get_field(usage, "total_token_count") or 0),
            provider=self.name,
            model=model or None,
        )

    def response_to_history_items(self, raw: Any) -> list[HistoryItem]:
        items: list[HistoryItem] = []
        thoughts = [
            get_field(p, "text")
            for p in _parts(raw)
            if get_field(p, "thought") and get_field(p, "text")
        ]
        if thoughts:
            items.append(Reasoning(content="\n\n".join(thoughts)))
        text = _text(raw)
        if text:
            items.append(Message(role="assistant", content=text))
        return items

    def has_structured_output(self, raw: Any) -> bool:
        parts = _parts(raw)
        if not parts:
            return False
        call = get_field(parts[-1], "function_call")
        return get_field(call, "name") == STRUCTURED_OUTPUT_TOOL_NAME

    def extract_structured_output(self, raw: Any) -> dict[str, Any] | None:
        if not self.has_structured_output(raw):
            return None
        args = get_field(get_field(_parts(raw)[-1], "function_call"), "args")
        return dict(args) if args else {}

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------

    def classify_error(self, error: BaseException) -> ClassifiedError:
        common = classify_common(error)
        if common is not None:
            return common

        status = extract_status_code(error)
        if status == 429:
            return rate_limited(error, RATE_LIMIT_SUGGESTED_DELAY_MS)
        if status in RETRYABLE_STATUS_CODES:
            return retryable(error)
        if status in UNRECOVERABLE_STATUS_CODES:
            return unrecoverable(error)

        message = str(error).lower()
        if any(phrase in message for phrase in _RATE_LIMIT_PHRASES):
            return rate_limited(error, RATE_LIMIT_SUGGESTED_DELAY_MS)
        if any(phrase in message for phrase in _RETRYABLE_PHRASES):
            return retryable(error)
        return unknown(error, provider=self.name)


def _parts(raw: Any) -> list[Any]:
    candidates = get_field(raw, "candidates") or []
    if not candidates:
        return []
    return list(get_field(get_field(candidates[0], "content"), "parts") or [])


def _finish_reason(raw: Any) -> str | None:
    candidates = get_field(raw, "candidates") or []
    if not candidates:
        return None
    reason = get_field(candidates[0], "finish_reason")
    return getattr(reason, "value", reason)


def _text(raw: Any) -> str:
    return "".join(
        get_field(p, "text")
        for p in _parts(raw)
        if get_field(p, "text") and not get_field(p, "thought")
    )


def _standard_call(call: Any, part: Any) -> StandardToolCall:
    return StandardToolCall(
        call_id=get_field(call, "id") or generate_call_id(),
        name=get_field(call, "name") or "",
        arguments=dumps_arguments(get_field(call, "args") or {}),
        raw=part,
    )


def _function_response_part(item: ToolResult) -> dict[str, Any]:
    response = parse_json(item.output)
    if not isinstance(response, dict):
        response = {"result": item.output}
    return {
        "function_response": {
            "id": item.id,
            "name": item.name or "function",
            "response": response,
        }
    }


def _append_content(
    contents: list[dict[str, Any]], role: str, part: dict[str, Any]
) -> None:
    """Append *part*, merging into the trailing content when roles match."""
    if contents and contents[-1]["role"] == role:
        contents[-1]["parts"].append(part)
    else:
        contents.append({"role": role, "parts": [part]})


def _append_instructions(contents: list[dict[str, Any]], instructions: str) -> None:
    if not contents or contents[-1]["role"] != "user":
        _append_content(contents, "user", {"text": instructions})
        return
    for part in reversed(contents[-1]["parts"]):
        if "text" in part:
            part["text"] = f"{part['text']}\n\n{instructions}"
            return
    contents[-1]["parts"].append({"text": instructions})
