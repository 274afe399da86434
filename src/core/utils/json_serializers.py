"""Shared JSON serialization utilities for log records and persisted state."""

from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    Fallback serializer for ``json.dumps(default=...)``.

    Keeps types meaningful instead of converting everything to strings:
    - datetime/date -> ISO 8601 string
    - Enum -> value
    - set/frozenset -> sorted list
    - pydantic models -> ``model_dump()``
    - Path -> string
    - Everything else -> string (fallback)

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return str(obj)


__all__ = ["json_serializer"]
