"""Provider adapter protocol: the seam between the loops and vendor APIs."""

from __future__ import annotations

from copy import deepcopy
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from conduit.constants import STRUCTURED_OUTPUT_TOOL_NAME
from conduit.providers._schema import to_json_schema
from conduit.providers._utils import parse_json
from conduit.types import (
    HistoryItem,
    Message,
    ParsedResponse,
    StandardToolCall,
    StandardToolResult,
)

if TYPE_CHECKING:
    from conduit.tools import Toolkit
    from conduit.types import ClassifiedError, OperateRequest, UsageItem


@runtime_checkable
class ProviderAdapter(Protocol):
    """Translate between normalized requests/responses and one vendor API.

    Adapters are stateless: one instance is safely shared across calls.
    """

    name: str
    default_model: str

    def build_request(self, request: OperateRequest) -> dict[str, Any]: ...

    def format_tools(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]: ...

    def format_output_schema(self, schema: Any) -> dict[str, Any]: ...

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any: ...

    def parse_response(self, raw: Any, options: Any = None) -> ParsedResponse: ...

    def extract_tool_calls(self, raw: Any) -> list[StandardToolCall]: ...

    def extract_usage(self, raw: Any, model: str) -> UsageItem: ...

    def format_tool_result(
        self, tool_call: StandardToolCall, result: StandardToolResult
    ) -> dict[str, Any]: ...

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: StandardToolCall,
        result: StandardToolResult,
    ) -> dict[str, Any]: ...

    def response_to_history_items(self, raw: Any) -> list[HistoryItem]: ...

    def classify_error(self, error: BaseException) -> ClassifiedError: ...

    def is_complete(self, raw: Any) -> bool: ...

    def has_structured_output(self, raw: Any) -> bool: ...

    def extract_structured_output(self, raw: Any) -> dict[str, Any] | None: ...


class BaseProviderAdapter:
    """Defaults shared by the concrete adapters."""

    name: str = ""
    default_model: str = ""
    #: Whether structured output rides on the ``structured_output`` virtual tool.
    uses_structured_output_tool: bool = True
    structured_output_description: str = (
        "Output a structured JSON object, use this before your final response "
        "to give structured outputs to the user"
    )

    @property
    def supports_streaming(self) -> bool:
        return callable(getattr(self, "execute_stream_request", None))

    def format_output_schema(self, schema: Any) -> dict[str, Any]:
        return to_json_schema(schema)

    def structured_output_tool(self, output_schema: dict[str, Any]) -> dict[str, Any]:
        """Normalized definition of the virtual structured-output tool."""
        return {
            "name": STRUCTURED_OUTPUT_TOOL_NAME,
            "description": self.structured_output_description,
            "parameters": deepcopy(output_schema),
            "type": "function",
        }

    def tool_definitions(
        self, toolkit: Toolkit | None, output_schema: dict[str, Any] | None
    ) -> list[dict[str, Any]]:
        """Normalized tool definitions plus the virtual tool when applicable."""
        definitions = list(toolkit.tools) if toolkit is not None else []
        if output_schema is not None and self.uses_structured_output_tool:
            definitions.append(self.structured_output_tool(output_schema))
        return definitions

    def extract_content(self, raw: Any, format_requested: bool = False) -> Any:
        return self.parse_response(
            raw, {"format": True} if format_requested else None
        ).content

    def is_complete(self, raw: Any) -> bool:
        return not self.extract_tool_calls(raw)

    def has_structured_output(self, raw: Any) -> bool:
        return self.extract_structured_output(raw) is not None

    def extract_structured_output(self, raw: Any) -> dict[str, Any] | None:
        for call in self.extract_tool_calls(raw):
            if call.name == STRUCTURED_OUTPUT_TOOL_NAME:
                args = parse_json(call.arguments)
                return args if isinstance(args, dict) else None
        return None

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: StandardToolCall,
        result: StandardToolResult,
    ) -> dict[str, Any]:
        """Return a copy of *request* with the call and its result appended."""
        updated = deepcopy(request)
        self._append_history_items(
            updated, [tool_call.to_history_item(), result.to_history_item()]
        )
        return updated

    def _append_history_items(
        self, request: dict[str, Any], items: list[HistoryItem]
    ) -> None:
        raise NotImplementedError


def format_requested(options: Any) -> bool:
    """True when *options* asks for structured output."""
    if options is None:
        return False
    if isinstance(options, dict):
        return bool(options.get("format"))
    return getattr(options, "format", None) is not None


def split_system(
    messages: list[HistoryItem], system: str | None
) -> tuple[str | None, list[HistoryItem]]:
    """Separate system messages from the rest of the conversation.

    Returns ``system`` when given, otherwise the joined history system text.
    """
    rest: list[HistoryItem] = []
    found: list[str] = []
    for item in messages:
        if isinstance(item, Message) and item.role == "system":
            if isinstance(item.content, str) and item.content:
                found.append(item.content)
            continue
        rest.append(item)
    return (system or ("\n\n".join(found) if found else None)), rest


def content_text(content: Any) -> str:
    """Flatten message content (string or parts) into plain text."""
    if isinstance(content, str):
        return content
    texts: list[str] = []
    for part in content or []:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            texts.append(part["text"])
    return "".join(texts)
