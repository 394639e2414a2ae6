"""Response accumulation for a single operate invocation."""

from __future__ import annotations

from copy import deepcopy
from typing import TYPE_CHECKING, Any

from conduit.types import LlmError, OperateResponse, ResponseStatus

if TYPE_CHECKING:
    from conduit.types import HistoryItem, UsageItem


class ResponseBuilder:
    """Fluent accumulator for ``OperateResponse``.

    Every mutator returns ``self``. ``build()`` snapshots the current state so
    later mutation of the builder never leaks into returned responses.
    """

    def __init__(self, *, provider: str | None = None, model: str | None = None):
        self.provider = provider
        self.model = model
        self.content: Any = None
        self.status = ResponseStatus.IN_PROGRESS
        self.error: LlmError | None = None
        self.history: list[HistoryItem] = []
        self.output: list[HistoryItem] = []
        self.usage: list[UsageItem] = []
        self.responses: list[Any] = []
        self.reasoning: list[str] = []

    def set_content(self, content: Any) -> ResponseBuilder:
        self.content = content
        return self

    def set_status(self, status: ResponseStatus) -> ResponseBuilder:
        self.status = ResponseStatus(status)
        return self

    def set_error(self, error: LlmError | None) -> ResponseBuilder:
        self.error = error
        return self

    def set_history(self, history: list[HistoryItem]) -> ResponseBuilder:
        self.history = list(history)
        return self

    def append_to_history(self, *items: HistoryItem) -> ResponseBuilder:
        self.history.extend(items)
        return self

    def append_to_output(self, *items: HistoryItem) -> ResponseBuilder:
        self.output.extend(items)
        return self

    def add_usage(self, usage: UsageItem) -> ResponseBuilder:
        self.usage.append(usage)
        return self

    def add_response(self, raw: Any) -> ResponseBuilder:
        """Keep a raw provider payload for debugging."""
        self.responses.append(raw)
        return self

    def add_reasoning(self, text: str) -> ResponseBuilder:
        if text:
            self.reasoning.append(text)
        return self

    def complete(self) -> ResponseBuilder:
        return self.set_status(ResponseStatus.COMPLETED)

    def incomplete(self) -> ResponseBuilder:
        return self.set_status(ResponseStatus.INCOMPLETE)

    def build(self) -> OperateResponse:
        return OperateResponse(
            content=deepcopy(self.content),
            status=self.status,
            error=self.error,
            history=list(self.history),
            output=list(self.output),
            usage=list(self.usage),
            responses=_copy_raw(self.responses),
            provider=self.provider,
            model=self.model,
            reasoning=list(self.reasoning),
        )


def _copy_raw(responses: list[Any]) -> list[Any]:
    # SDK response objects may hold clients or locks that refuse deepcopy.
    copied: list[Any] = []
    for raw in responses:
        try:
            copied.append(deepcopy(raw))
        except Exception:
            copied.append(raw)
    return copied
