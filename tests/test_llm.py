"""Llm facade tests: resolution, client ownership, and the fallback chain.

Real adapters are used with fake SDK clients, so these exercise the whole
path from ``Llm.operate`` down to the recorded SDK kwargs.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import conduit
from conduit import FallbackConfig, Llm
from conduit.errors import BadGatewayError, ConfigurationError
from conduit.providers import OpenAIAdapter
from conduit.retry import RetryPolicy
from conduit.types import ResponseStatus, TextChunk
from tests.helpers import RecordingHooks, anthropic_client, openai_client

pytestmark = pytest.mark.contract

NO_RETRY = RetryPolicy(max_retries=0)


def _anthropic_text(text: str) -> dict:
    return {
        "model": "claude-sonnet-4-5",
        "stop_reason": "end_turn",
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 3, "output_tokens": 2},
    }


def _openai_text(text: str) -> dict:
    return {
        "model": "gpt-5",
        "status": "completed",
        "output": [{"type": "message", "content": [{"type": "output_text", "text": text}]}],
        "usage": {"input_tokens": 1, "output_tokens": 1, "total_tokens": 2},
    }


class AuthenticationError(Exception):
    """Stands in for an SDK auth failure (classified unrecoverable by name)."""


# =============================================================================
# Construction
# =============================================================================


@pytest.mark.parametrize(
    ("provider", "model", "expected"),
    [
        (None, None, ("openai", "gpt-5")),
        ("anthropic", None, ("anthropic", "claude-sonnet-4-5")),
        (None, "gemini-2.5-pro", ("gemini", "gemini-2.5-pro")),
        (None, "openrouter:mistralai/mistral-large", ("openrouter", "mistralai/mistral-large")),
    ],
)
def test_provider_and_model_resolution(provider, model, expected) -> None:
    llm = Llm(provider, model=model)
    assert (llm.provider, llm.model) == expected
    assert llm.adapter.name == expected[0]


def test_repr_hides_api_key() -> None:
    llm = Llm("openai", api_key="sk-secret")
    assert repr(llm) == "Llm(provider='openai', model='gpt-5')"
    assert "sk-secret" not in repr(llm.config)


def test_unknown_provider_raises() -> None:
    with pytest.raises(ConfigurationError):
        Llm("acme")


@pytest.mark.asyncio
async def test_missing_api_key_surfaces_on_first_call() -> None:
    llm = Llm("anthropic")
    with pytest.raises(ConfigurationError, match="API key required"):
        await llm.operate("Hi")


# =============================================================================
# Operate
# =============================================================================


@pytest.mark.asyncio
async def test_operate_with_injected_client() -> None:
    client = anthropic_client(_anthropic_text("Hello!"))
    llm = Llm("anthropic", client=client)

    response = await llm.operate("Hi", system="Be nice.", temperature=0)

    assert response.content == "Hello!"
    assert response.status is ResponseStatus.COMPLETED
    assert response.provider == "anthropic"
    assert response.fallback_used is None
    sent = client.messages.create.calls[0]
    assert sent["model"] == "claude-sonnet-4-5"
    assert sent["system"] == "Be nice."
    assert sent["temperature"] == 0


@pytest.mark.asyncio
async def test_instance_hooks_apply_to_every_call() -> None:
    recorder = RecordingHooks()
    llm = Llm("openai", client=openai_client(_openai_text("a"), _openai_text("b")), hooks=recorder.hooks())

    await llm.operate("one")
    await llm.operate("two")

    assert recorder.names().count("before_each_model_request") == 2


@pytest.mark.asyncio
async def test_send_returns_content_only() -> None:
    llm = Llm("openai", client=openai_client(_openai_text("pong")))
    assert await llm.send("ping") == "pong"


# =============================================================================
# Fallback
# =============================================================================


@pytest.mark.asyncio
async def test_fallback_used_when_primary_fails() -> None:
    fallback_client = openai_client(_openai_text("from fallback"))
    llm = Llm(
        "anthropic",
        client=anthropic_client(AuthenticationError("bad key")),
        retry_policy=NO_RETRY,
        fallback=[FallbackConfig(provider="openai", client=fallback_client)],
    )

    response = await llm.operate("Hi", model="claude-haiku-4-5")

    assert response.content == "from fallback"
    assert response.provider == "openai"
    assert response.fallback_used is True
    assert response.fallback_attempts == 2
    # The per-call model override belongs to the primary provider only.
    assert fallback_client.responses.create.calls[0]["model"] == "gpt-5"


@pytest.mark.asyncio
async def test_primary_success_annotates_response() -> None:
    llm = Llm(
        "anthropic",
        client=anthropic_client(_anthropic_text("primary")),
        fallback=[{"provider": "openai", "client": openai_client()}],
    )

    response = await llm.operate("Hi")

    assert response.content == "primary"
    assert response.fallback_used is False
    assert response.fallback_attempts == 1


@pytest.mark.asyncio
async def test_all_providers_failing_raises_last_error() -> None:
    llm = Llm(
        "anthropic",
        client=anthropic_client(AuthenticationError("primary down")),
        retry_policy=NO_RETRY,
        fallback=[
            FallbackConfig(provider="openai", client=openai_client(AuthenticationError("openai down"))),
        ],
    )

    with pytest.raises(BadGatewayError, match="openai down"):
        await llm.operate("Hi")


@pytest.mark.asyncio
async def test_fallback_false_disables_chain() -> None:
    fallback_client = openai_client(_openai_text("unused"))
    llm = Llm(
        "anthropic",
        client=anthropic_client(AuthenticationError("down")),
        retry_policy=NO_RETRY,
        fallback=[FallbackConfig(provider="openai", client=fallback_client)],
    )

    with pytest.raises(BadGatewayError, match="down"):
        await llm.operate("Hi", fallback=False)
    assert fallback_client.responses.create.calls == []


@pytest.mark.asyncio
async def test_per_call_fallback_list_overrides_instance_chain() -> None:
    llm = Llm(
        "anthropic",
        client=anthropic_client(AuthenticationError("down")),
        retry_policy=NO_RETRY,
    )

    response = await llm.operate(
        "Hi",
        fallback=[FallbackConfig(provider="openai", client=openai_client(_openai_text("rescued")))],
    )

    assert response.content == "rescued"
    assert response.fallback_used is True


# =============================================================================
# Streaming
# =============================================================================


@pytest.mark.asyncio
async def test_stream_uses_adapter_streaming() -> None:
    client = openai_client(
        [
            {"type": "response.output_text.delta", "delta": "Hi"},
            {"type": "response.completed", "response": {"usage": {"input_tokens": 1, "output_tokens": 1}}},
        ]
    )
    llm = Llm("openai", client=client)

    chunks = [chunk async for chunk in llm.stream("Hello")]

    assert chunks[0] == TextChunk(content="Hi")
    assert chunks[-1].type == "done"
    assert client.responses.create.calls[0]["stream"] is True


# =============================================================================
# Client Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_aclose_closes_owned_client(monkeypatch) -> None:
    closed: list[str] = []

    async def aclose() -> None:
        closed.append("client")

    fake = SimpleNamespace(
        responses=SimpleNamespace(create=openai_client(_openai_text("x")).responses.create),
        aclose=aclose,
    )
    monkeypatch.setattr(OpenAIAdapter, "create_client", lambda self, api_key: fake)

    async with Llm("openai", api_key="sk-test") as llm:
        await llm.operate("Hi")

    assert closed == ["client"]


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open() -> None:
    closed: list[str] = []

    async def aclose() -> None:
        closed.append("client")

    llm = Llm("openai", client=SimpleNamespace(aclose=aclose))
    await llm.aclose()

    assert closed == []


@pytest.mark.asyncio
async def test_aclose_prefers_genai_async_client(monkeypatch) -> None:
    closed: list[str] = []

    async def aio_close() -> None:
        closed.append("aio")

    fake = SimpleNamespace(aio=SimpleNamespace(aclose=aio_close), close=lambda: closed.append("sync"))
    llm = Llm("gemini", api_key="key")
    monkeypatch.setattr(llm.adapter, "create_client", lambda api_key: fake)

    llm._get_client()
    await llm.aclose()

    assert closed == ["aio"]


@pytest.mark.asyncio
async def test_aclose_swallows_cleanup_failures(monkeypatch, caplog) -> None:
    def boom() -> None:
        raise RuntimeError("already closed")

    llm = Llm("openai", api_key="key")
    monkeypatch.setattr(llm.adapter, "create_client", lambda api_key: SimpleNamespace(close=boom))
    llm._get_client()

    with caplog.at_level("WARNING", logger="conduit.llm"):
        await llm.aclose()

    assert "Client cleanup failed" in caplog.text


# =============================================================================
# Module-Level Helpers
# =============================================================================


@pytest.mark.asyncio
async def test_module_operate_builds_and_closes_llm(monkeypatch) -> None:
    client = openai_client(_openai_text("Hello Ada"))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setattr(OpenAIAdapter, "create_client", lambda self, api_key: client)

    response = await conduit.operate("Hi {{name}}", llm="openai", data={"name": "Ada"})

    assert response.content == "Hello Ada"
    assert client.responses.create.calls[0]["input"] == [{"role": "user", "content": "Hi Ada"}]


@pytest.mark.asyncio
async def test_module_stream(monkeypatch) -> None:
    client = openai_client([{"type": "response.output_text.delta", "delta": "yo"}])
    monkeypatch.setattr(OpenAIAdapter, "create_client", lambda self, api_key: client)

    chunks = [c async for c in conduit.stream("Hi", model="gpt-5", api_key="sk")]

    assert [c.type for c in chunks] == ["text", "done"]
