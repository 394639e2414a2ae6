"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: fake SDK clients that record request
kwargs, recording hooks, and builders for scripted raw responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

from conduit.hooks import Hooks, HOOK_NAMES

# =============================================================================
# Scripted raw responses (for ScriptedAdapter)
# =============================================================================


def text_response(text: str, *, usage: tuple[int, int] = (1, 1)) -> dict[str, Any]:
    return {"text": text, "usage": usage}


def tool_response(*calls: tuple[str, str, dict[str, Any]], text: str | None = None) -> dict[str, Any]:
    """Raw response requesting ``(call_id, name, arguments)`` tool calls."""
    return {
        "text": text,
        "tool_calls": [
            {"id": call_id, "name": name, "arguments": arguments}
            for call_id, name, arguments in calls
        ],
        "usage": (1, 1),
    }


# =============================================================================
# Fake SDK clients
# =============================================================================


class _AsyncIter:
    def __init__(self, items: list[Any]) -> None:
        self._items = list(items)

    def __aiter__(self) -> _AsyncIter:
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            raise StopAsyncIteration
        item = self._items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@dataclass
class RecordingEndpoint:
    """Async SDK method double: records kwargs and replays a script.

    A scripted list is returned as an async iterator (a stream); a scripted
    exception is raised.
    """

    script: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, list):
            return _AsyncIter(item)
        return item


def anthropic_client(*script: Any) -> SimpleNamespace:
    return SimpleNamespace(messages=SimpleNamespace(create=RecordingEndpoint(list(script))))


def openai_client(*script: Any) -> SimpleNamespace:
    return SimpleNamespace(responses=SimpleNamespace(create=RecordingEndpoint(list(script))))


def openrouter_client(*script: Any) -> SimpleNamespace:
    return SimpleNamespace(
        chat=SimpleNamespace(
            completions=SimpleNamespace(create=RecordingEndpoint(list(script)))
        )
    )


def gemini_client(*script: Any) -> SimpleNamespace:
    endpoint = RecordingEndpoint(list(script))
    return SimpleNamespace(
        aio=SimpleNamespace(
            models=SimpleNamespace(
                generate_content=endpoint, generate_content_stream=endpoint
            )
        )
    )


# =============================================================================
# Hooks
# =============================================================================


@dataclass
class RecordingHooks:
    """Collects ``(slot, context)`` pairs for every hook invocation."""

    events: list[tuple[str, Any]] = field(default_factory=list)

    def hooks(self) -> Hooks:
        def make(name: str):
            def hook(ctx: Any) -> None:
                self.events.append((name, ctx))

            return hook

        return Hooks(**{name: make(name) for name in HOOK_NAMES})

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
