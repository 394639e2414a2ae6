"""Streaming multi-turn operate loop.

Same turn structure as :mod:`conduit.loop`, delivered as an async generator
of stream chunks. Connection-level retries only happen before the first chunk
of a turn reaches the caller; after that a failure becomes an ``ErrorChunk``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from conduit.constants import STRUCTURED_OUTPUT_TOOL_NAME
from conduit.errors import BadGatewayError
from conduit.hooks import ModelErrorContext, ModelRequestContext, ModelResponseContext
from conduit.loop import execute_tool_call, prepare_loop, too_many_turns_error
from conduit.options import OperateOptions
from conduit.retry import DEFAULT_RETRY_POLICY, RetryPolicy, terminal_error
from conduit.types import (
    DoneChunk,
    ErrorChunk,
    LlmError,
    Message,
    StandardToolCall,
    TextChunk,
    ToolCallChunk,
    ToolResultChunk,
    UsageItem,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from conduit.loop import LoopSetup
    from conduit.providers.base import BaseProviderAdapter
    from conduit.types import StreamChunk

logger = logging.getLogger(__name__)

STREAM_ERROR_TITLE = "Stream Error"
BAD_FUNCTION_CALL_TITLE = "Bad Function Call"


class StreamLoop:
    """Drive one adapter's streaming API through tool-calling turns."""

    def __init__(
        self,
        adapter: BaseProviderAdapter,
        *,
        client: Any,
        model: str | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.adapter = adapter
        self.client = client
        self.model = model
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep

    async def execute(
        self, input: Any, options: OperateOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        """Yield chunks for the whole session, ending with exactly one ``DoneChunk``.

        Raises:
            BadGatewayError: The adapter cannot stream, or a turn failed before
                any data was delivered.
        """
        adapter = self.adapter
        if not adapter.supports_streaming:
            raise BadGatewayError(
                f"Provider {adapter.name} does not support streaming",
                provider=adapter.name,
                phase="stream",
            )

        options = options or OperateOptions()
        setup = prepare_loop(adapter, input, options, model=self.model)
        runner = setup.runner
        history = list(setup.history)
        usage: list[UsageItem] = []

        for turn in range(setup.max_turns):
            provider_request = adapter.build_request(setup.request(history, options))
            logger.debug(
                "%s stream request (turn %d/%d, model=%s)",
                adapter.name,
                turn + 1,
                setup.max_turns,
                setup.model,
            )
            await runner.before_each_model_request(
                ModelRequestContext(
                    input=input, options=options, provider_request=provider_request
                )
            )

            text_parts: list[str] = []
            tool_calls: list[StandardToolCall] = []
            failed = False
            async for chunk in self._stream_turn(
                setup, input, options, provider_request, usage
            ):
                if isinstance(chunk, TextChunk):
                    text_parts.append(chunk.content)
                elif isinstance(chunk, ToolCallChunk):
                    tool_calls.append(chunk.tool_call)
                elif isinstance(chunk, ErrorChunk):
                    failed = True
                yield chunk
            if failed:
                break

            text = "".join(text_parts)
            await runner.after_each_model_response(
                ModelResponseContext(
                    content=text,
                    input=input,
                    options=options,
                    provider_request=provider_request,
                    provider_response=None,
                    usage=list(usage),
                )
            )
            if text:
                history.append(Message(role="assistant", content=text))

            if any(c.name == STRUCTURED_OUTPUT_TOOL_NAME for c in tool_calls):
                break
            if not tool_calls or setup.toolkit is None or setup.max_turns <= 1:
                break

            for call in tool_calls:
                result, value = await execute_tool_call(setup.toolkit, call, runner)
                history.extend([call.to_history_item(), result.to_history_item()])
                if result.success:
                    yield ToolResultChunk(
                        tool_call_id=call.call_id, name=call.name, result=value
                    )
                else:
                    yield ErrorChunk(
                        error=LlmError(
                            status=BadGatewayError.default_status,
                            title=BAD_FUNCTION_CALL_TITLE,
                            detail=(
                                f"Error executing function call {call.name}.\n"
                                f"{result.error}"
                            ),
                        )
                    )

            if turn + 1 >= setup.max_turns:
                logger.warning(
                    "Model requested tool calls after %d turns; stopping",
                    setup.max_turns,
                )
                yield ErrorChunk(error=too_many_turns_error(setup.max_turns))

        yield DoneChunk(usage=list(usage))

    async def _stream_turn(
        self,
        setup: LoopSetup,
        input: Any,
        options: OperateOptions,
        provider_request: dict[str, Any],
        usage: list[UsageItem],
    ) -> AsyncIterator[StreamChunk]:
        """Stream one turn, retrying only while nothing has been yielded.

        Adapter ``DoneChunk``s are absorbed into *usage*.
        """
        adapter = self.adapter
        attempt = 0
        while True:
            delivered = False
            try:
                async for chunk in adapter.execute_stream_request(
                    self.client, provider_request
                ):
                    if isinstance(chunk, DoneChunk):
                        usage.extend(chunk.usage)
                        continue
                    delivered = True
                    yield chunk
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if delivered:
                    logger.error("Stream failed after partial data was delivered: %s", exc)
                    yield ErrorChunk(
                        error=LlmError(
                            status=502, title=STREAM_ERROR_TITLE, detail=str(exc)
                        )
                    )
                    return

                classified = adapter.classify_error(exc)
                error_ctx = ModelErrorContext(
                    error=exc,
                    input=input,
                    options=options,
                    provider_request=provider_request,
                )
                exhausted = not self.retry_policy.should_retry(attempt)
                if exhausted or not classified.should_retry:
                    await setup.runner.on_unrecoverable_model_error(error_ctx)
                    logger.error("Stream request failed after %d retries: %s", attempt, exc)
                    raise terminal_error(classified) from exc

                delay_ms = self.retry_policy.get_delay_for_attempt(attempt)
                await setup.runner.on_retryable_model_error(error_ctx)
                logger.warning(
                    "Stream request failed (%s); retrying in %.0fms: %s",
                    classified.category.value,
                    delay_ms,
                    exc,
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1
