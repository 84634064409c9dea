"""JSON Schemas for the documents issuegraph exchanges with the cache server.

Schemas are shallow: top-level structure plus the position shape. Raw items
stay open (``object``) because they are GitHub payloads we do not own.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator

SCHEMA_KEY = "$schema"
SCHEMA_URL = "http://json-schema.org/draft-07/schema#"

_POSITION: dict[str, Any] = {
    "type": "object",
    "required": ["x", "y"],
    "properties": {
        "x": {"type": "number"},
        "y": {"type": "number"},
    },
}


def get_schemas() -> dict[str, Any]:
    """Return a mapping of schema name -> JSON Schema dictionary.

    Keys:
        cache:          ``GET /cache/{graphId}`` response.
        node_positions: ``PUT /cache/{graphId}/node-positions`` body.
        items:          ``PUT /cache/{graphId}/items`` body.
    """
    node_positions_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "title": "NodePositions",
        "type": "object",
        "additionalProperties": _POSITION,
    }
    items_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "title": "RawItems",
        "type": "array",
        "items": {"type": "object"},
    }
    cache_schema: dict[str, Any] = {
        SCHEMA_KEY: SCHEMA_URL,
        "title": "CacheData",
        "type": "object",
        "required": ["items", "nodePositions"],
        "properties": {
            "items": {"type": ["array", "null"], "items": {"type": "object"}},
            "nodePositions": {
                "type": ["object", "null"],
                "additionalProperties": _POSITION,
            },
        },
    }
    return {
        "cache": cache_schema,
        "node_positions": node_positions_schema,
        "items": items_schema,
    }


def _format_error_path(path: list[Any]) -> str:
    return "/".join(str(p) for p in path)


def validate_document(name: str, document: Any) -> list[str]:
    """Validate ``document`` against schema ``name``; return error messages."""
    schema = get_schemas()[name]
    errors: list[str] = []
    for err in sorted(Draft7Validator(schema).iter_errors(document), key=lambda e: list(e.path)):
        location = _format_error_path(list(err.path))
        errors.append(f"{location}: {err.message}" if location else err.message)
    return errors


__all__ = ["get_schemas", "validate_document"]
