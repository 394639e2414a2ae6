"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, the shared scripted
adapter double, and automatic API test skipping. All fixtures here are
autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any

import pytest

from conduit.providers._errors import classify_common, unrecoverable
from conduit.providers.base import BaseProviderAdapter
from conduit.types import (
    ClassifiedError,
    HistoryItem,
    Message,
    OperateRequest,
    ParsedResponse,
    Reasoning,
    StandardToolCall,
    StandardToolResult,
    UsageItem,
)

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class ScriptedAdapter(BaseProviderAdapter):
    """Adapter double that replays scripted raw responses or exceptions.

    Raw responses are plain dicts::

        {"text": "...", "tool_calls": [{"id": ..., "name": ..., "arguments": {...}}],
         "structured": {...}, "reasoning": "...", "usage": (input, output)}

    ``stream_script`` holds one list of chunks (or exceptions) per streamed turn.
    Every built request is recorded in ``requests``.
    """

    script: list[Any] = field(default_factory=list)
    stream_script: list[list[Any]] = field(default_factory=list)
    requests: list[dict[str, Any]] = field(default_factory=list)
    streaming: bool = True
    name: str = "scripted"
    default_model: str = "scripted-model"

    @property
    def supports_streaming(self) -> bool:
        return self.streaming

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        payload = {
            "model": request.model,
            "messages": list(request.messages),
            "system": request.system,
            "instructions": request.instructions,
            "tools": request.tools,
            "format": request.format,
        }
        self.requests.append(payload)
        return payload

    def _append_history_items(
        self, request: dict[str, Any], items: list[HistoryItem]
    ) -> None:
        request["messages"].extend(items)

    def format_tools(self, toolkit, output_schema=None) -> list[dict[str, Any]]:
        return [{"name": t["name"]} for t in self.tool_definitions(toolkit, output_schema)]

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        if not self.script:
            return {"text": "ok"}
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def execute_stream_request(self, client: Any, request: dict[str, Any]):
        chunks = self.stream_script.pop(0) if self.stream_script else []
        for chunk in chunks:
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk

    def parse_response(self, raw: Any, options: Any = None) -> ParsedResponse:
        return ParsedResponse(
            content=raw.get("text"),
            has_tool_calls=bool(raw.get("tool_calls")),
            stop_reason=raw.get("stop_reason"),
            usage=self.extract_usage(raw, self.default_model),
            raw=raw,
        )

    def extract_tool_calls(self, raw: Any) -> list[StandardToolCall]:
        return [
            StandardToolCall(
                call_id=c["id"],
                name=c["name"],
                arguments=json.dumps(c.get("arguments", {})),
                raw=c,
            )
            for c in raw.get("tool_calls") or []
        ]

    def extract_usage(self, raw: Any, model: str) -> UsageItem:
        input_tokens, output_tokens = raw.get("usage", (1, 1))
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            total=input_tokens + output_tokens,
            provider=self.name,
            model=model,
        )

    def format_tool_result(
        self, tool_call: StandardToolCall, result: StandardToolResult
    ) -> dict[str, Any]:
        return {"call_id": tool_call.call_id, "output": result.output}

    def response_to_history_items(self, raw: Any) -> list[HistoryItem]:
        items: list[HistoryItem] = []
        if raw.get("reasoning"):
            items.append(Reasoning(content=raw["reasoning"]))
        if raw.get("text"):
            items.append(Message(role="assistant", content=raw["text"]))
        return items

    def classify_error(self, error: BaseException) -> ClassifiedError:
        return classify_common(error) or unrecoverable(error)

    def has_structured_output(self, raw: Any) -> bool:
        return raw.get("structured") is not None

    def extract_structured_output(self, raw: Any) -> dict[str, Any] | None:
        return raw.get("structured")


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================

_PROVIDER_ENV_PREFIXES = ("ANTHROPIC_", "GEMINI_", "GOOGLE_", "OPENAI_", "OPENROUTER_")


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears every provider API key variable to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(_PROVIDER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Fixtures (opt-in)
# =============================================================================


@pytest.fixture
def scripted_adapter() -> ScriptedAdapter:
    """A fresh ScriptedAdapter with an empty script."""
    return ScriptedAdapter()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays instead of waiting."""
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays  # type: ignore[attr-defined]
    return sleep
