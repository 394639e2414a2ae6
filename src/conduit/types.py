"""Domain types shared by adapters, loops, and the Llm facade.

Vendor payloads never leak into these types except as the opaque ``raw``
attribute kept for debugging.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
from typing import Any, Literal, Union

# =============================================================================
# Conversation history
# =============================================================================


@dataclass(frozen=True)
class Message:
    """A conversational message turn."""

    role: str
    content: str | list[dict[str, Any]] = ""
    type: Literal["message"] = field(default="message", init=False)


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model; ``arguments`` is a JSON string."""

    id: str
    name: str
    arguments: str = "{}"
    type: Literal["function_call"] = field(default="function_call", init=False)


@dataclass(frozen=True)
class ToolResult:
    """Output of a tool call; ``output`` is a JSON string."""

    id: str
    name: str
    output: str
    type: Literal["function_call_output"] = field(
        default="function_call_output", init=False
    )


@dataclass(frozen=True)
class Reasoning:
    """Model reasoning surfaced by the provider."""

    id: str | None = None
    content: str | None = None
    type: Literal["reasoning"] = field(default="reasoning", init=False)


HistoryItem = Union[Message, ToolCall, ToolResult, Reasoning]
History = list[HistoryItem]

# =============================================================================
# Requests and parsed responses
# =============================================================================


@dataclass(frozen=True)
class OperateRequest:
    """Normalized request handed to an adapter for one turn.

    ``tools`` and ``format`` are already in the adapter's vendor shape.
    """

    model: str
    messages: list[HistoryItem]
    system: str | None = None
    instructions: str | None = None
    tools: list[dict[str, Any]] | None = None
    format: dict[str, Any] | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)
    user: str | None = None
    temperature: float | None = None


@dataclass(frozen=True)
class UsageItem:
    """Token accounting for one successful vendor API call."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    total: int = 0
    provider: str | None = None
    model: str | None = None


def sum_usage(items: list[UsageItem]) -> UsageItem:
    """Collapse a list of usage items into one total."""
    providers = {i.provider for i in items if i.provider}
    models = {i.model for i in items if i.model}
    return UsageItem(
        input=sum(i.input for i in items),
        output=sum(i.output for i in items),
        reasoning=sum(i.reasoning for i in items),
        total=sum(i.total for i in items),
        provider=providers.pop() if len(providers) == 1 else None,
        model=models.pop() if len(models) == 1 else None,
    )


@dataclass(frozen=True)
class ParsedResponse:
    """Normalized view of one provider response."""

    content: Any = None
    has_tool_calls: bool = False
    stop_reason: str | None = None
    usage: UsageItem = field(default_factory=UsageItem)
    raw: Any = None


@dataclass(frozen=True)
class StandardToolCall:
    """A tool call extracted from a provider response."""

    call_id: str
    name: str
    arguments: str = "{}"
    raw: Any = None

    def to_history_item(self) -> ToolCall:
        return ToolCall(id=self.call_id, name=self.name, arguments=self.arguments)


@dataclass(frozen=True)
class StandardToolResult:
    """Result of executing a tool, ready to send back to the provider."""

    call_id: str
    name: str
    output: str
    success: bool = True
    error: str | None = None

    def to_history_item(self) -> ToolResult:
        return ToolResult(id=self.call_id, name=self.name, output=self.output)


# =============================================================================
# Errors and status
# =============================================================================


class ErrorCategory(str, enum.Enum):
    """How the retry layer should treat a provider failure."""

    RATE_LIMIT = "rate_limit"
    RETRYABLE = "retryable"
    UNRECOVERABLE = "unrecoverable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """A provider error plus the retry decision derived from it."""

    error: BaseException
    category: ErrorCategory
    should_retry: bool
    suggested_delay_ms: int | None = None


class ResponseStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class LlmError:
    """Error attached to a response or stream rather than raised."""

    status: int
    title: str
    detail: str | None = None


@dataclass(frozen=True)
class OperateResponse:
    """Final envelope returned by a buffered operate call."""

    content: Any = None
    status: ResponseStatus = ResponseStatus.IN_PROGRESS
    error: LlmError | None = None
    history: list[HistoryItem] = field(default_factory=list)
    output: list[HistoryItem] = field(default_factory=list)
    usage: list[UsageItem] = field(default_factory=list)
    responses: list[Any] = field(default_factory=list)
    provider: str | None = None
    model: str | None = None
    reasoning: list[str] = field(default_factory=list)
    fallback_used: bool | None = None
    fallback_attempts: int | None = None


# =============================================================================
# Stream chunks
# =============================================================================


@dataclass(frozen=True)
class TextChunk:
    content: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ToolCallChunk:
    tool_call: StandardToolCall
    type: Literal["tool_call"] = field(default="tool_call", init=False)


@dataclass(frozen=True)
class ToolResultChunk:
    tool_call_id: str
    name: str
    result: Any = None
    type: Literal["tool_result"] = field(default="tool_result", init=False)


@dataclass(frozen=True)
class ErrorChunk:
    error: LlmError
    type: Literal["error"] = field(default="error", init=False)


@dataclass(frozen=True)
class DoneChunk:
    """Terminal chunk; ``usage`` lists every usage item of the session."""

    usage: list[UsageItem] = field(default_factory=list)
    type: Literal["done"] = field(default="done", init=False)


StreamChunk = Union[TextChunk, ToolCallChunk, ToolResultChunk, ErrorChunk, DoneChunk]
