"""Shared utilities for provider adapters."""

from __future__ import annotations

from copy import deepcopy
import json
from typing import Any
import uuid

from conduit.errors import ConfigurationError


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read *name* from an SDK object or a plain dict.

    SDK responses are Pydantic models in production and dicts in fixtures;
    adapters read both the same way.
    """
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def to_plain(obj: Any) -> Any:
    """Convert an SDK model (or nested structure of them) into plain data."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {k: to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(v) for v in obj]
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(exclude_none=True)
    return obj


def parse_json(text: Any) -> Any:
    """Return ``json.loads(text)`` or *None* when it is not valid JSON."""
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def dumps_arguments(args: Any) -> str:
    if isinstance(args, str):
        return args
    return json.dumps(to_plain(args) if args is not None else {})


def generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def to_strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for strict structured-output requirements.

    Ensures that for all 'object' types:
    1. additionalProperties is False
    2. All defined properties are listed in 'required'
    """
    normalized = deepcopy(schema)

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {}
        for key, value in node.items():
            if key in ("properties", "$defs") and isinstance(value, dict):
                # Property names are not schema keywords.
                updated[key] = {name: walk(sub) for name, sub in value.items()}
            else:
                updated[key] = walk(value)

        if updated.get("type") == "object" or "properties" in updated:
            properties = updated.get("properties", {})
            if isinstance(properties, dict):
                updated["additionalProperties"] = False
                updated["required"] = list(properties.keys())

        return updated

    result = walk(normalized)
    if not isinstance(result, dict):
        raise ConfigurationError("Invalid format: expected an object schema")
    return result
