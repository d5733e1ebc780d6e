"""Plain-text rendering of field values for list views and widgets."""

from __future__ import annotations

from typing import Any

from app.relations import user_label
from strata.canonical_json import CanonicalJsonTypeError, canonical_dumps
from strata.field_types import canonical_type, raw_field_config, to_snake_case
from visibility_eval import is_empty_value


_NAME_ORDER = ("title", "first", "middle", "last", "suffix")
_ADDRESS_ORDER = ("line1", "line2", "city", "state", "postal", "country")
_MEDIA_TYPES = {"file", "image", "video"}


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _joined(value: dict, order: tuple, sep: str) -> str:
    return sep.join(p for p in (_text(value.get(k)) for k in order) if p)


def _subfield_key(sub: Any) -> str:
    if not isinstance(sub, dict):
        return ""
    return to_snake_case(sub.get("field_key") or sub.get("key") or "")


def _summarize_repeater(field: dict, rows: list, depth: int, max_depth: int, label_limit: int) -> str:
    if depth > max_depth:
        return f"({len(rows)} rows)"
    cfg = raw_field_config(field)
    subfields = [s for s in cfg.get("subfields") or [] if _subfield_key(s)]

    def _row(row: Any, idx: int) -> str:
        if not subfields:
            return f"Row {idx + 1}"
        data = row if isinstance(row, dict) else {}
        parts = []
        for sub in subfields:
            value = data.get(_subfield_key(sub))
            if is_empty_value(value):
                continue
            piece = format_field_value(sub, value, depth=depth + 1, max_depth=max_depth, label_limit=2)
            if piece:
                parts.append(piece)
            if len(parts) >= 2:
                break
        return " · ".join(parts) if parts else f"Row {idx + 1}"

    shown = [_row(row, idx) for idx, row in enumerate(rows[:label_limit])]
    more = len(rows) - len(shown)
    text = " | ".join(shown)
    return f"{text} | +{more} more" if more > 0 else text


def _user_names(field: dict, value: Any, resolved: dict | None) -> str:
    """Ids of a relation_user value rendered as user labels; unknown ids stay as ids."""
    resolved = resolved if isinstance(resolved, dict) else {}
    users = resolved.get("usersById") or {}
    key = field.get("key") if isinstance(field, dict) else None
    settings = (resolved.get("userFields") or {}).get(key) or {}
    display = settings.get("display") or "name_email"
    ids = value if isinstance(value, list) else [value]
    labels = []
    for item in ids:
        label = user_label(users.get(str(item).strip()), display) if item is not None else ""
        labels.append(label or _text(item))
    return ", ".join(label for label in labels if label)


def format_field_value(
    field: dict,
    value: Any,
    depth: int = 1,
    max_depth: int = 2,
    label_limit: int = 3,
    resolved: dict | None = None,
) -> str:
    if is_empty_value(value):
        return ""
    field_type = canonical_type(field.get("type") if isinstance(field, dict) else None)

    if field_type == "repeater":
        rows = value if isinstance(value, list) else []
        return _summarize_repeater(field, rows, depth, max_depth, label_limit) if rows else ""

    if field_type in ("checkbox", "multiselect", "tags"):
        if isinstance(value, list):
            items = [_text(v) for v in value]
        elif isinstance(value, str):
            items = [s.strip() for s in value.split(",")]
        else:
            items = [_text(value)]
        return ", ".join(i for i in items if i)

    if field_type == "relation_user":
        return _user_names(field, value, resolved)

    if field_type == "relation":
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    if field_type == "datetime" and isinstance(value, dict):
        return _text(value.get("utc"))
    if field_type == "time" and isinstance(value, dict):
        return _text(value.get("time"))

    if field_type == "name" and isinstance(value, dict):
        return _joined(value, _NAME_ORDER, " ")
    if field_type == "address" and isinstance(value, dict):
        return _joined(value, _ADDRESS_ORDER, ", ")

    if field_type in _MEDIA_TYPES:
        if isinstance(value, dict):
            return _text(value.get("name") or value.get("title") or value.get("path"))
        return ""

    if field_type == "color" and isinstance(value, dict):
        return _text(value.get("hex"))

    if field_type == "json":
        if isinstance(value, str):
            return value
        try:
            return canonical_dumps(value)
        except (CanonicalJsonTypeError, ValueError):
            return "[json]"

    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def display_map(fields: list[dict], data: Any, resolved: dict | None = None) -> dict:
    data = data if isinstance(data, dict) else {}
    return {
        f["key"]: format_field_value(f, data.get(f["key"]), resolved=resolved)
        for f in fields
        if f.get("key")
    }
