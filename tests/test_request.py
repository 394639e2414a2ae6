"""Input processing and per-call option tests."""

from __future__ import annotations

import pytest

from conduit.constants import DEFAULT_MAX_TURNS, MAX_TURNS_ABSOLUTE_LIMIT
from conduit.errors import ConfigurationError
from conduit.options import OperateOptions, resolve_max_turns
from conduit.request import (
    apply_placeholders,
    normalize_input,
    prepend_system_message,
    process_input,
    to_history_item,
)
from conduit.tools import Tool, Toolkit
from conduit.types import Message, Reasoning, ToolCall, ToolResult

pytestmark = pytest.mark.unit


# =============================================================================
# Placeholders
# =============================================================================


@pytest.mark.parametrize(
    ("text", "data", "expected"),
    [
        ("Hello {{name}}", {"name": "Ada"}, "Hello Ada"),
        ("Hello {{ name }}", {"name": "Ada"}, "Hello Ada"),
        ("{{user.city}} weather", {"user": {"city": "Oslo"}}, "Oslo weather"),
        ("Hello {{missing}}", {"name": "Ada"}, "Hello {{missing}}"),
        ("{{n}} items", {"n": 3}, "3 items"),
        ("No markers", {"name": "Ada"}, "No markers"),
        ("Hello {{name}}", None, "Hello {{name}}"),
    ],
)
def test_apply_placeholders(text, data, expected) -> None:
    assert apply_placeholders(text, data) == expected


# =============================================================================
# History coercion
# =============================================================================


def test_to_history_item_wire_shapes() -> None:
    assert to_history_item("hi") == Message(role="user", content="hi")
    assert to_history_item({"role": "assistant", "content": "yo"}) == Message(
        role="assistant", content="yo"
    )
    assert to_history_item(
        {"type": "function_call", "call_id": "c1", "name": "add", "arguments": "{}"}
    ) == ToolCall(id="c1", name="add", arguments="{}")
    assert to_history_item(
        {"type": "function_call_output", "call_id": "c1", "name": "add", "output": "3"}
    ) == ToolResult(id="c1", name="add", output="3")
    assert to_history_item(
        {"type": "reasoning", "id": "r1", "summary": [{"text": "a"}, {"text": "b"}]}
    ) == Reasoning(id="r1", content="a\nb")


def test_to_history_item_passes_through_typed_items() -> None:
    call = ToolCall(id="c", name="n")
    assert to_history_item(call) is call


@pytest.mark.parametrize("bad", [42, {"content": "no role"}])
def test_to_history_item_rejects_unknown_shapes(bad) -> None:
    with pytest.raises(ConfigurationError):
        to_history_item(bad)


def test_normalize_input_accepts_single_or_list() -> None:
    assert normalize_input(None) == []
    assert len(normalize_input("a")) == 1
    assert len(normalize_input(["a", {"role": "user", "content": "b"}])) == 2


# =============================================================================
# System message handling
# =============================================================================


def test_prepend_system_message_inserts_replaces_and_dedups() -> None:
    user = Message(role="user", content="hi")
    old = Message(role="system", content="old")
    new = Message(role="system", content="new")

    assert prepend_system_message([user], "new") == [new, user]
    assert prepend_system_message([old, user], "new") == [new, user]
    assert prepend_system_message([new, user], "new") == [new, user]
    assert prepend_system_message([user], None) == [user]


# =============================================================================
# process_input
# =============================================================================


def test_process_input_orders_history_before_input_and_fills_placeholders() -> None:
    options = OperateOptions(
        history=[{"role": "user", "content": "earlier {{name}}"}],
        data={"name": "Ada"},
        system="You help {{name}}",
        instructions="Answer {{name}} briefly",
    )

    processed = process_input("Hi {{name}}", options)

    assert processed.history == [
        Message(role="system", content="You help Ada"),
        Message(role="user", content="earlier {{name}}"),
        Message(role="user", content="Hi Ada"),
    ]
    assert processed.system == "You help Ada"
    assert processed.instructions == "Answer Ada briefly"


def test_process_input_fills_text_parts() -> None:
    message = Message(
        role="user",
        content=[{"type": "text", "text": "{{x}}"}, {"type": "image_url", "url": "u"}],
    )
    processed = process_input(message, OperateOptions(data={"x": "filled"}))
    content = processed.history[0].content
    assert content[0]["text"] == "filled"
    assert content[1] == {"type": "image_url", "url": "u"}


def test_process_input_respects_placeholders_false() -> None:
    options = OperateOptions(data={"name": "Ada"}, placeholders=False)
    assert process_input("Hi {{name}}", options).history[0].content == "Hi {{name}}"


def test_process_input_rejects_empty_input() -> None:
    with pytest.raises(ConfigurationError, match="Nothing to send"):
        process_input(None, OperateOptions())


# =============================================================================
# OperateOptions
# =============================================================================


@pytest.mark.parametrize(
    ("turns", "expected"),
    [
        (None, DEFAULT_MAX_TURNS),
        (True, DEFAULT_MAX_TURNS),
        (False, 1),
        (0, 1),
        (-3, 1),
        (5, 5),
        (10_000, MAX_TURNS_ABSOLUTE_LIMIT),
    ],
)
def test_resolve_max_turns(turns, expected) -> None:
    assert resolve_max_turns(turns) == expected


@pytest.mark.parametrize(
    "kwargs",
    [
        {"system": 1},
        {"data": ["not", "a", "dict"]},
        {"history": "hi"},
        {"hooks": "nope"},
        {"tools": "nope"},
        {"turns": "many"},
        {"provider_options": []},
        {"fallback": True},
        {"fallback": [{"provider": "nope"}]},
    ],
)
def test_operate_options_validation(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        OperateOptions(**kwargs)


def test_toolkit_from_list_and_passthrough() -> None:
    tool = Tool(name="t", description="", parameters={}, call=lambda _: None)
    kit = Toolkit([tool])

    assert OperateOptions().toolkit() is None
    assert OperateOptions(tools=[]).toolkit() is None
    assert OperateOptions(tools=kit).toolkit() is kit
    built = OperateOptions(tools=[tool], explain=True).toolkit()
    assert built is not None
    assert built.explain is True
