"""Safe JSON serialization for values coming out of the legacy store.

Legacy values are arbitrary structures produced by the UI process. Types
that plain JSON cannot express are tagged so that ``safe_parse`` can
restore them::

    {"__type__": "datetime", "value": "2025-01-01T00:00:00+00:00"}
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)

_TYPE_KEY = "__type__"


@dataclass
class SerializationResult:
    """Outcome of ``safe_stringify``."""

    success: bool
    data: str | None = None
    error: str | None = None


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_TYPE_KEY: "datetime", "value": value.isoformat()}
    if isinstance(value, date):
        return {_TYPE_KEY: "date", "value": value.isoformat()}
    if isinstance(value, (set, frozenset)):
        return {_TYPE_KEY: "set", "value": sorted(value, key=repr)}
    if isinstance(value, (bytes, bytearray)):
        return {_TYPE_KEY: "bytes", "value": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode(obj: dict) -> Any:
    kind = obj.get(_TYPE_KEY)
    if kind is None or "value" not in obj or len(obj) != 2:
        return obj
    raw = obj["value"]
    if kind == "datetime":
        return datetime.fromisoformat(raw)
    if kind == "date":
        return date.fromisoformat(raw)
    if kind == "set":
        return set(raw)
    if kind == "bytes":
        return base64.b64decode(raw)
    return obj


def safe_stringify(value: Any, strict: bool = False) -> SerializationResult:
    """Serialize ``value`` to JSON without raising.

    Args:
        value: Any value received from the legacy store.
        strict: Re-raise serialization errors instead of reporting them.
    """
    try:
        data = json.dumps(value, default=_encode, ensure_ascii=False)
    except (TypeError, ValueError, OverflowError) as e:
        if strict:
            raise
        return SerializationResult(success=False, error=str(e) or "JSON serialization failed")
    return SerializationResult(success=True, data=data)


def safe_parse(text: str) -> Any | None:
    """Deserialize JSON produced by ``safe_stringify``. Returns None on failure."""
    try:
        return json.loads(text, object_hook=_decode)
    except (TypeError, ValueError) as e:
        logger.error("JSON parse failed: %s", e)
        return None
