"""Input normalization for the operate and stream loops."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import TYPE_CHECKING, Any

from conduit.errors import ConfigurationError
from conduit.types import HistoryItem, Message, Reasoning, ToolCall, ToolResult

if TYPE_CHECKING:
    from conduit.options import OperateOptions

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")


@dataclass(frozen=True)
class ProcessedInput:
    """Initial loop state derived from the caller's input and options."""

    history: list[HistoryItem]
    system: str | None = None
    instructions: str | None = None


def apply_placeholders(text: str, data: dict[str, Any] | None) -> str:
    """Replace ``{{key}}`` (or ``{{a.b}}``) markers with values from *data*.

    Unknown keys are left in place so partially templated prompts survive.
    """
    if not data or "{{" not in text:
        return text

    def lookup(match: re.Match[str]) -> str:
        value: Any = data
        for part in match.group(1).split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return match.group(0)
        return str(value)

    return _PLACEHOLDER_RE.sub(lookup, text)


def to_history_item(item: Any) -> HistoryItem:
    """Coerce a dict in any of the common wire shapes into a history item."""
    if isinstance(item, (Message, ToolCall, ToolResult, Reasoning)):
        return item
    if isinstance(item, str):
        return Message(role="user", content=item)
    if not isinstance(item, dict):
        raise ConfigurationError(
            f"Unsupported history item: {type(item).__name__}",
            hint="Use Message/ToolCall/ToolResult/Reasoning or role/content dicts.",
        )

    item_type = item.get("type")
    if item_type == "function_call":
        return ToolCall(
            id=str(item.get("call_id") or item.get("id") or ""),
            name=str(item.get("name", "")),
            arguments=item.get("arguments") or "{}",
        )
    if item_type == "function_call_output":
        return ToolResult(
            id=str(item.get("call_id") or item.get("id") or ""),
            name=str(item.get("name", "")),
            output=item.get("output") or "",
        )
    if item_type == "reasoning":
        content = item.get("content")
        if content is None and isinstance(item.get("summary"), list):
            content = "\n".join(
                s.get("text", "") for s in item["summary"] if isinstance(s, dict)
            )
        return Reasoning(id=item.get("id"), content=content)

    role = item.get("role")
    if not isinstance(role, str):
        raise ConfigurationError(
            "history items must have a string 'role' or a known 'type'",
            hint="Pass {'role': 'user', 'content': '...'}.",
        )
    return Message(role=role, content=item.get("content") or "")


def normalize_input(value: Any) -> list[HistoryItem]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [to_history_item(v) for v in value]
    return [to_history_item(value)]


def _fill_message(item: HistoryItem, data: dict[str, Any]) -> HistoryItem:
    if not isinstance(item, Message):
        return item
    if isinstance(item.content, str):
        return Message(role=item.role, content=apply_placeholders(item.content, data))
    parts: list[dict[str, Any]] = []
    for part in item.content:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str):
            part = {**part, "text": apply_placeholders(text, data)}
        parts.append(part)
    return Message(role=item.role, content=parts)


def prepend_system_message(
    history: list[HistoryItem], system: str | None
) -> list[HistoryItem]:
    """Put *system* first, replacing a different leading system message."""
    if not system:
        return history
    first = history[0] if history else None
    if isinstance(first, Message) and first.role == "system":
        if first.content == system:
            return history
        return [Message(role="system", content=system), *history[1:]]
    return [Message(role="system", content=system), *history]


def process_input(input: Any, options: OperateOptions) -> ProcessedInput:
    """Build the initial history for a loop invocation.

    Order: ``options.history`` first, then the new input. Placeholders from
    ``options.data`` are applied to the new input, the system prompt, and the
    instructions (never to prior history).
    """
    data = options.data if options.placeholders else None

    items = normalize_input(input)
    system = options.system
    instructions = options.instructions
    if data:
        items = [_fill_message(item, data) for item in items]
        if system:
            system = apply_placeholders(system, data)
        if instructions:
            instructions = apply_placeholders(instructions, data)

    history = [*normalize_input(options.history), *items]
    history = prepend_system_message(history, system)

    if not history:
        raise ConfigurationError(
            "Nothing to send: input and history are both empty",
            hint="Pass a prompt string or a history list.",
        )

    return ProcessedInput(history=history, system=system, instructions=instructions)
