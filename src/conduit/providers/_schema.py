"""Output-schema normalization shared by the adapters.

Callers describe structured output in one of three ways:

- a JSON schema dict (optionally wrapped as ``{"type": "json_schema", ...}``)
- a Pydantic ``BaseModel`` subclass
- a *natural* schema built from Python types, e.g.
  ``{"title": str, "score": float, "tags": [str], "mood": ["happy", "sad"]}``

Each adapter calls :func:`to_json_schema` and then applies its own vendor
tweaks.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from pydantic import BaseModel

from conduit.errors import ConfigurationError

_JSON_SCHEMA_KEYS = frozenset(
    {"$schema", "$ref", "$defs", "properties", "anyOf", "oneOf", "allOf", "items"}
)
_TYPE_NAMES = frozenset(
    {"string", "number", "integer", "boolean", "object", "array", "null"}
)


def _holds_python_type(value: Any) -> bool:
    if isinstance(value, type):
        return True
    return isinstance(value, (list, tuple)) and any(isinstance(v, type) for v in value)


def _is_schema_shaped(key: str, value: Any) -> bool:
    if key in ("$schema", "$ref"):
        return isinstance(value, str)
    if key in ("properties", "$defs"):
        return isinstance(value, dict) and all(isinstance(v, dict) for v in value.values())
    if key == "items":
        return isinstance(value, (dict, bool))
    # anyOf / oneOf / allOf
    return isinstance(value, list) and all(isinstance(v, dict) for v in value)


def is_json_schema(value: Any) -> bool:
    """Heuristic: dicts whose ``type`` is a string, or that use schema keywords.

    Natural schemas may use keyword names as property names
    (``{"items": [str]}``), so keywords only count when they hold
    schema-shaped values, and any Python type value means natural.
    """
    if not isinstance(value, dict):
        return False
    if any(_holds_python_type(v) for v in value.values()):
        return False
    if isinstance(value.get("type"), str):
        return True
    keywords = [key for key in value if key in _JSON_SCHEMA_KEYS]
    return bool(keywords) and all(_is_schema_shaped(k, value[k]) for k in keywords)


def natural_to_json_schema(value: Any) -> dict[str, Any]:
    """Convert a natural (Python-type based) schema into JSON schema."""
    if value is str:
        return {"type": "string"}
    if value is bool:
        return {"type": "boolean"}
    if value in (int, float):
        return {"type": "number"}
    if value is dict:
        return {"type": "object"}
    if value is list:
        return {"type": "array"}
    if isinstance(value, type) and issubclass(value, BaseModel):
        return value.model_json_schema()

    if isinstance(value, (list, tuple)):
        if not value:
            return {"type": "array"}
        if all(isinstance(v, str) for v in value):
            return {"type": "string", "enum": list(value)}
        if len(value) == 1:
            return {"type": "array", "items": natural_to_json_schema(value[0])}
        raise ConfigurationError(
            f"Ambiguous natural schema list: {value!r}",
            hint="Use [T] for arrays or a list of strings for an enum.",
        )

    if isinstance(value, dict):
        if not value:
            return {"type": "object"}
        if is_json_schema(value):
            return deepcopy(value)
        properties = {str(k): natural_to_json_schema(v) for k, v in value.items()}
        return {
            "type": "object",
            "properties": properties,
            "required": list(properties),
        }

    if isinstance(value, str) and value in _TYPE_NAMES:
        return {"type": value}

    raise ConfigurationError(
        f"Unsupported natural schema value: {value!r}",
        hint="Use str, int, float, bool, dict, list, [T], or nested dicts.",
    )


def to_json_schema(schema: Any) -> dict[str, Any]:
    """Normalize any supported format input into a plain JSON schema dict.

    ``$schema`` is stripped because several vendors reject it.
    """
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        result = schema.model_json_schema()
    elif isinstance(schema, dict) and schema.get("type") == "json_schema":
        inner = schema.get("schema")
        if isinstance(inner, dict):
            result = deepcopy(inner)
        else:
            result = deepcopy(schema)
            result["type"] = "object"
    elif is_json_schema(schema):
        result = deepcopy(schema)
    else:
        result = natural_to_json_schema(schema)

    result.pop("$schema", None)
    return result
