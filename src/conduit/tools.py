"""Caller-supplied tools and the Toolkit registry that dispatches them."""

from __future__ import annotations

from collections.abc import Iterable
from copy import deepcopy
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any

import jsonschema
from pydantic import BaseModel, ValidationError

from conduit.constants import EXPLANATION_PROPERTY
from conduit.errors import ConfigurationError, ToolArgumentsError, UnknownToolError
from conduit.hooks import resolve_value

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_EXPLANATION_SCHEMA: dict[str, Any] = {
    "type": "string",
    "description": (
        "Clearly state why the tool is being called and what larger question "
        "it helps answer."
    ),
}


@dataclass(frozen=True)
class Tool:
    """A callable the model may invoke.

    ``parameters`` is a JSON schema dict or a Pydantic model class. ``call``
    receives the parsed arguments (a model instance for Pydantic parameters)
    and may return a value or an awaitable.
    """

    name: str
    description: str
    parameters: dict[str, Any] | type[BaseModel]
    call: Callable[[Any], Any]
    type: str = "function"
    #: Optional log line (or callable building one from the args) for each call.
    message: str | Callable[[Any], Any] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError(
                "Tool name must be a non-empty string",
                hint="Tool(name='lookup_weather', ...)",
            )
        if not callable(self.call):
            raise ConfigurationError(
                f"Tool {self.name!r} call must be callable",
            )
        if not (
            isinstance(self.parameters, dict)
            or (
                isinstance(self.parameters, type)
                and issubclass(self.parameters, BaseModel)
            )
        ):
            raise ConfigurationError(
                f"Tool {self.name!r} parameters must be a JSON schema dict or a Pydantic model class",
            )

    def parameters_schema(self) -> dict[str, Any]:
        """Return the parameters as a JSON schema dict."""
        if isinstance(self.parameters, dict):
            return deepcopy(self.parameters)
        return self.parameters.model_json_schema()


class Toolkit:
    """Immutable registry of tools, keyed by name."""

    def __init__(
        self,
        tools: Iterable[Tool] = (),
        *,
        explain: bool = False,
        log: bool = True,
    ) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ConfigurationError(
                    f"Duplicate tool name: {tool.name!r}",
                    hint="Tool names must be unique within a Toolkit.",
                )
            self._tools[tool.name] = tool
        self.explain = explain
        self.log = log

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self):
        return iter(self._tools.values())

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def tools(self) -> list[dict[str, Any]]:
        """Tool definitions as sent to providers (no ``call``)."""
        definitions: list[dict[str, Any]] = []
        for tool in self._tools.values():
            parameters = tool.parameters_schema()
            if self.explain:
                properties = dict(parameters.get("properties") or {})
                properties[EXPLANATION_PROPERTY] = dict(_EXPLANATION_SCHEMA)
                parameters["properties"] = properties
                required = list(parameters.get("required") or [])
                if EXPLANATION_PROPERTY not in required:
                    required.append(EXPLANATION_PROPERTY)
                parameters["required"] = required
            definitions.append(
                {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": parameters,
                    "type": tool.type or "function",
                }
            )
        return definitions

    async def call(self, name: str, arguments: str | dict[str, Any] | None) -> Any:
        """Dispatch a tool call and return whatever the tool produces.

        Raises:
            UnknownToolError: No tool named *name* is registered.
            ToolArgumentsError: Arguments fail the tool's parameter schema.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(
                f"Tool not found: {name}",
                hint=f"Registered tools: {', '.join(self._tools) or '(none)'}",
                tool_name=name,
            )

        args = _parse_arguments(arguments)
        if isinstance(args, dict) and EXPLANATION_PROPERTY in args:
            args = dict(args)
            explanation = args.pop(EXPLANATION_PROPERTY)
            logger.debug("Tool %s explanation: %s", name, explanation)

        validated = _validate_arguments(tool, args)

        if self.log:
            await self._log_call(tool, validated)

        return await resolve_value(tool.call(validated))

    async def _log_call(self, tool: Tool, args: Any) -> None:
        message = tool.message
        if message is None:
            logger.info("Calling tool %s", tool.name)
            return
        if callable(message):
            message = await resolve_value(message(args))
        logger.info("%s", message)


def _parse_arguments(arguments: str | dict[str, Any] | None) -> Any:
    if arguments is None or arguments == "":
        return {}
    if not isinstance(arguments, str):
        return arguments
    try:
        return json.loads(arguments)
    except json.JSONDecodeError:
        # Some models send bare strings; hand them through untouched.
        return arguments


def _validate_arguments(tool: Tool, args: Any) -> Any:
    if isinstance(tool.parameters, type) and issubclass(tool.parameters, BaseModel):
        try:
            return tool.parameters.model_validate(args)
        except ValidationError as e:
            raise ToolArgumentsError(
                f"Invalid arguments for tool {tool.name}: {e}",
                tool_name=tool.name,
            ) from e

    if not tool.parameters:
        return args
    try:
        jsonschema.validate(instance=args, schema=tool.parameters)
    except jsonschema.ValidationError as e:
        raise ToolArgumentsError(
            f"Invalid arguments for tool {tool.name}: {e.message}",
            hint=f"Schema path: {'/'.join(str(p) for p in e.absolute_schema_path)}",
            tool_name=tool.name,
        ) from e
    return args


def serialize_tool_output(result: Any) -> str:
    """Encode a tool's return value as the JSON string stored in history."""
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    try:
        return json.dumps(result)
    except (TypeError, ValueError):
        return json.dumps(result, default=str)
