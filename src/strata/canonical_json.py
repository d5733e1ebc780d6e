"""Deterministic JSON for stored payloads and inline rendering."""

from __future__ import annotations

import json
import math
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a value has no JSON representation."""


def to_jsonable(obj: Any, path: str = "$") -> Any:
    """Coerce driver values (UUID, datetime, Decimal, tuples) into plain JSON types.

    Dict keys must already be strings; non-finite floats are rejected so the
    output is always valid JSON.
    """
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return obj
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(
                    f"Unsupported key type at {path}: {type(key).__name__}"
                )
            out[key] = to_jsonable(value, f"{path}.{key}")
        return out
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(item, f"{path}[{idx}]") for idx, item in enumerate(obj)]
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise ValueError(f"Non-finite decimal at {path}: {obj!r}")
        return int(obj) if obj == obj.to_integral_value() else float(obj)
    raise CanonicalJsonTypeError(
        f"Unsupported type at {path}: {type(obj).__name__}"
    )


def canonical_dumps(obj: Any) -> str:
    """Serialize to compact JSON with recursively sorted keys.

    Rules:
    - Sort dict keys recursively.
    - Preserve list order.
    - UTF-8 with non-ASCII preserved.
    - No extra whitespace.
    """
    return json.dumps(
        to_jsonable(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def payload_dumps(obj: Any) -> str:
    """Serialize a jsonb payload for storage, preserving key order."""
    return json.dumps(to_jsonable(obj), ensure_ascii=False, allow_nan=False)


def ensure_json(value: Any) -> Any:
    """Parse a payload that a driver returned as text; tolerate junk as empty."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return {}
    return value
