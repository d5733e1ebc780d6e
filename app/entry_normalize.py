"""Canonicalize an incoming entry payload against its content type's fields."""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable

from app.canonicalize import CANONICALIZERS
from repeater_runtime import prune_rows, repeater_config
from strata.field_types import canonical_type, to_camel_case, to_snake_case


logger = logging.getLogger("strata.normalize")


def _field_key(field: dict) -> str:
    return to_snake_case(field.get("key") or field.get("field_key") or "")


def rewrite_aliases(fields: Iterable[dict], data: dict) -> dict:
    """Move camelCase alias values onto the canonical snake_case key when it is absent."""
    out = dict(data)
    for field in fields:
        key = _field_key(field)
        alias = to_camel_case(key)
        if not key or alias == key:
            continue
        if alias in out and key not in out:
            out[key] = out.pop(alias)
    return out


def canonicalize_value(field_type: str, value: Any, key: str = "") -> Any:
    """Best-effort: a canonicalizer failure keeps the raw value."""
    canonicalizer = CANONICALIZERS.get(field_type)
    if canonicalizer is None:
        return value
    try:
        return canonicalizer(value)
    except Exception as exc:
        logger.debug("canonicalize_skipped key=%s type=%s error=%s", key, field_type, exc)
        return value


def normalize_entry_data(fields: Any, data: Any) -> dict:
    if not isinstance(data, dict):
        return {}
    declared = [f for f in fields or [] if isinstance(f, dict) and _field_key(f)]
    out = rewrite_aliases(declared, copy.deepcopy(data))
    for field in declared:
        key = _field_key(field)
        if key not in out:
            continue
        field_type = canonical_type(field.get("type"))
        value = out[key]
        if field_type == "repeater":
            out[key] = prune_rows(repeater_config(field.get("config") or {}), value)
            continue
        out[key] = canonicalize_value(field_type, value, key)
    return out
