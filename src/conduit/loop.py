"""Buffered multi-turn operate loop.

One invocation walks ``Requesting(turn) -> [ToolExecuting -> Requesting]* ->
Completed | Incomplete``. History is the only loop state: every turn rebuilds
the vendor request from it, so a ``ToolCall`` is always followed by its
``ToolResult`` before the next request goes out.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any

from conduit.errors import TooManyTurnsError
from conduit.hooks import (
    HookRunner,
    ModelRequestContext,
    ModelResponseContext,
    ToolContext,
)
from conduit.options import OperateOptions
from conduit.request import process_input
from conduit.result import ResponseBuilder
from conduit.retry import RetryContext, RetryExecutor, RetryPolicy
from conduit.tools import serialize_tool_output
from conduit.types import (
    HistoryItem,
    LlmError,
    OperateRequest,
    OperateResponse,
    Reasoning,
    StandardToolCall,
    StandardToolResult,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from conduit.providers.base import BaseProviderAdapter
    from conduit.tools import Toolkit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoopSetup:
    """Everything fixed for the lifetime of one loop invocation."""

    model: str
    history: list[HistoryItem]
    system: str | None
    instructions: str | None
    toolkit: Toolkit | None
    tools: list[dict[str, Any]] | None
    format: dict[str, Any] | None
    max_turns: int
    runner: HookRunner

    def request(self, history: list[HistoryItem], options: OperateOptions) -> OperateRequest:
        return OperateRequest(
            model=self.model,
            messages=list(history),
            system=self.system,
            instructions=self.instructions,
            tools=self.tools,
            format=self.format,
            provider_options=dict(options.provider_options),
            user=options.user,
            temperature=options.temperature,
        )


def prepare_loop(
    adapter: BaseProviderAdapter,
    input: Any,
    options: OperateOptions,
    *,
    model: str | None = None,
) -> LoopSetup:
    """Normalize input and format tools and output schema once per invocation."""
    processed = process_input(input, options)
    toolkit = options.toolkit()
    output_schema = (
        adapter.format_output_schema(options.format)
        if options.format is not None
        else None
    )
    tools = adapter.format_tools(toolkit, output_schema) or None
    return LoopSetup(
        model=options.model or model or adapter.default_model,
        history=list(processed.history),
        system=processed.system,
        instructions=processed.instructions,
        toolkit=toolkit,
        tools=tools,
        format=output_schema,
        max_turns=options.max_turns(),
        runner=HookRunner(options.hooks),
    )


def too_many_turns_error(max_turns: int) -> LlmError:
    return LlmError(
        status=TooManyTurnsError.default_status,
        title=TooManyTurnsError.title,
        detail=f"Model requested function call but exceeded {max_turns} turns",
    )


async def execute_tool_call(
    toolkit: Toolkit, call: StandardToolCall, runner: HookRunner
) -> tuple[StandardToolResult, Any]:
    """Run one tool call with its hooks.

    Tool failures are captured in the returned result (``success=False``)
    rather than raised; hook failures propagate.
    """
    await runner.before_each_tool(ToolContext(tool_name=call.name, args=call.arguments))
    logger.debug("Calling tool %s (%s)", call.name, call.call_id)
    try:
        value = await toolkit.call(call.name, call.arguments)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.error("Tool %s failed: %s", call.name, exc)
        await runner.on_tool_error(
            ToolContext(tool_name=call.name, args=call.arguments, error=exc)
        )
        return (
            StandardToolResult(
                call_id=call.call_id,
                name=call.name,
                output=json.dumps({"error": str(exc)}),
                success=False,
                error=str(exc),
            ),
            None,
        )
    await runner.after_each_tool(
        ToolContext(tool_name=call.name, args=call.arguments, result=value)
    )
    return (
        StandardToolResult(
            call_id=call.call_id, name=call.name, output=serialize_tool_output(value)
        ),
        value,
    )


class OperateLoop:
    """Drive one adapter through tool-calling turns until a final answer."""

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
        self.executor = RetryExecutor(
            retry_policy, classifier=adapter.classify_error, sleep=sleep
        )

    async def execute(
        self, input: Any, options: OperateOptions | None = None
    ) -> OperateResponse:
        """Run the loop and return the accumulated response.

        Raises:
            ConfigurationError: Input or options are invalid.
            RateLimitError: The provider rate limited a request.
            BadGatewayError: A request failed unrecoverably or ran out of retries.
        """
        options = options or OperateOptions()
        adapter = self.adapter
        setup = prepare_loop(adapter, input, options, model=self.model)
        runner = setup.runner
        builder = ResponseBuilder(provider=adapter.name, model=setup.model)
        builder.set_history(setup.history)

        for turn in range(setup.max_turns):
            provider_request = adapter.build_request(
                setup.request(builder.history, options)
            )
            logger.debug(
                "%s request (turn %d/%d, model=%s)",
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

            raw = await self.executor.execute(
                lambda req=provider_request: adapter.execute_request(self.client, req),
                context=RetryContext(
                    input=input, options=options, provider_request=provider_request
                ),
                hooks=runner.hooks,
            )

            parsed = adapter.parse_response(raw, options)
            builder.add_usage(parsed.usage).add_response(raw)
            await runner.after_each_model_response(
                ModelResponseContext(
                    content=parsed.content,
                    input=input,
                    options=options,
                    provider_request=provider_request,
                    provider_response=raw,
                    usage=list(builder.usage),
                )
            )

            for item in adapter.response_to_history_items(raw):
                if isinstance(item, Reasoning):
                    builder.add_reasoning(item.content or "")
                builder.append_to_history(item).append_to_output(item)

            if options.format is not None and adapter.has_structured_output(raw):
                builder.set_content(adapter.extract_structured_output(raw)).complete()
                break

            builder.set_content(parsed.content)
            tool_calls = adapter.extract_tool_calls(raw)
            if not tool_calls or setup.toolkit is None or setup.max_turns <= 1:
                builder.complete()
                break

            for call in tool_calls:
                result, _ = await execute_tool_call(setup.toolkit, call, runner)
                history_items = (call.to_history_item(), result.to_history_item())
                builder.append_to_history(*history_items).append_to_output(
                    *history_items
                )

            if turn + 1 >= setup.max_turns:
                logger.warning(
                    "Model requested tool calls after %d turns; stopping",
                    setup.max_turns,
                )
                builder.set_error(too_many_turns_error(setup.max_turns)).incomplete()

        return builder.build()
