"""``Llm``: provider/model resolution, SDK client ownership, fallback chain."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

from conduit.config import Config, FallbackConfig, normalize_fallback
from conduit.hooks import resolve_value
from conduit.loop import OperateLoop
from conduit.options import OperateOptions
from conduit.registry import create_adapter, resolve_model
from conduit.retry import RetryPolicy
from conduit.streaming import StreamLoop

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from conduit.hooks import HooksInput
    from conduit.types import OperateResponse, StreamChunk

logger = logging.getLogger(__name__)


class Llm:
    """Entry point for operate/stream calls against one provider.

    Example:
        llm = Llm("anthropic")
        response = await llm.operate("What is 2 + 2?")
        print(response.content)

    The SDK client is built on first use from ``api_key`` or the provider's
    environment variable; pass ``client=`` to inject one.
    """

    def __init__(
        self,
        provider: str | None = None,
        *,
        model: str | None = None,
        api_key: str | None = None,
        client: Any = None,
        fallback: list[FallbackConfig | dict[str, Any]] | None = None,
        retry_policy: RetryPolicy | None = None,
        hooks: HooksInput = None,
    ) -> None:
        name, resolved_model = resolve_model(provider, model)
        self.config = Config(
            provider=name,
            model=resolved_model,
            api_key=api_key,
            retry=retry_policy or RetryPolicy(),
            fallback=tuple(normalize_fallback(fallback)),
        )
        self.adapter = create_adapter(name)
        self.hooks = hooks
        self._client = client
        self._owns_client = client is None

    @property
    def provider(self) -> str:
        return self.config.provider

    @property
    def model(self) -> str:
        return self.config.model

    def __repr__(self) -> str:
        return f"Llm(provider={self.provider!r}, model={self.model!r})"

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self.adapter.create_client(self.config.resolved_api_key())
            self._owns_client = True
        return self._client

    def _options(
        self, options: OperateOptions | None, overrides: dict[str, Any]
    ) -> OperateOptions:
        if options is None:
            options = OperateOptions(**overrides)
        elif overrides:
            options = dataclasses.replace(options, **overrides)
        if options.hooks is None and self.hooks is not None:
            options = dataclasses.replace(options, hooks=self.hooks)
        return options

    def _fallback_chain(self, options: OperateOptions) -> tuple[FallbackConfig, ...]:
        if options.fallback is False:
            return ()
        if isinstance(options.fallback, list):
            return normalize_fallback(options.fallback)
        return self.config.fallback

    async def _operate_once(
        self, input: Any, options: OperateOptions
    ) -> OperateResponse:
        loop = OperateLoop(
            self.adapter,
            client=self._get_client(),
            model=self.model,
            retry_policy=self.config.retry,
        )
        return await loop.execute(input, options)

    async def operate(
        self, input: Any, options: OperateOptions | None = None, **kwargs: Any
    ) -> OperateResponse:
        """Run the buffered operate loop, falling back through the chain on failure.

        Keyword arguments are ``OperateOptions`` fields and override *options*.

        Raises:
            The last error when the primary provider and every fallback fail.
        """
        options = self._options(options, kwargs)
        chain = self._fallback_chain(options)
        if not chain:
            return await self._operate_once(input, options)

        primary_options = dataclasses.replace(options, fallback=False)
        attempts = 1
        try:
            response = await self._operate_once(input, primary_options)
            return dataclasses.replace(
                response, fallback_used=False, fallback_attempts=attempts
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_error: Exception = exc
            logger.warning(
                "%s failed (%s); trying %d fallback provider(s)",
                self.provider,
                exc,
                len(chain),
            )

        fallback_options = dataclasses.replace(primary_options, model=None)
        for entry in chain:
            attempts += 1
            try:
                fallback_llm = Llm(
                    entry.provider,
                    model=entry.model,
                    api_key=entry.api_key,
                    client=entry.client,
                    retry_policy=self.config.retry,
                    hooks=self.hooks,
                )
                try:
                    response = await fallback_llm._operate_once(input, fallback_options)
                finally:
                    await fallback_llm.aclose()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning("Fallback provider %s failed: %s", entry.provider, exc)
                continue
            logger.warning(
                "Fallback provider %s succeeded after %d attempts",
                entry.provider,
                attempts,
            )
            return dataclasses.replace(
                response, fallback_used=True, fallback_attempts=attempts
            )

        raise last_error

    async def stream(
        self, input: Any, options: OperateOptions | None = None, **kwargs: Any
    ) -> AsyncIterator[StreamChunk]:
        """Stream chunks from the streaming loop. Fallback does not apply."""
        options = self._options(options, kwargs)
        loop = StreamLoop(
            self.adapter,
            client=self._get_client(),
            model=self.model,
            retry_policy=self.config.retry,
        )
        async for chunk in loop.execute(input, options):
            yield chunk

    async def send(self, message: Any, **kwargs: Any) -> Any:
        """Single-turn convenience: return only the response content."""
        kwargs.setdefault("turns", False)
        response = await self.operate(message, **kwargs)
        return response.content

    async def aclose(self) -> None:
        """Close the SDK client if this instance created it."""
        client, self._client = self._client, None
        if client is None or not self._owns_client:
            return
        for target in (getattr(client, "aio", None), client):
            close = getattr(target, "aclose", None) or getattr(target, "close", None)
            if not callable(close):
                continue
            try:
                await resolve_value(close())
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Cleanup should never mask the primary failure.
                logger.warning("Client cleanup failed: %s", exc)
            return

    async def __aenter__(self) -> Llm:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
