"""Compile an editor view's section config into a concrete field layout.

Two empty cases are kept apart:

* no sections collection at all -> one synthesized section with every field;
* a sections collection that yields zero usable rows -> ``[]``.

The second is a broken view config and callers surface it as a warning
rather than quietly showing every field.
"""

from __future__ import annotations

from typing import Any, Dict, List

from strata.field_types import BUILTIN_FIELDS, BUILTIN_KEYS, as_int, to_snake_case


FALLBACK_SECTION = {"id": "main", "title": "Fields", "columns": 1}
_SECTION_KEYS = ("sections", "widgets")


def raw_sections(view_config: Any) -> list | None:
    """The configured sections list, or None when the config has none at all."""
    if not isinstance(view_config, dict):
        return None
    for key in _SECTION_KEYS:
        value = view_config.get(key)
        if isinstance(value, list):
            return value
    return None


def section_columns(section: dict) -> int:
    columns = as_int(section.get("columns"))
    if columns is not None and columns > 0:
        return columns
    layout = str(section.get("layout") or "").strip().lower()
    if "three" in layout:
        return 3
    if "two" in layout:
        return 2
    return 1


def _ref_key(ref: Any) -> str:
    if isinstance(ref, str):
        return ref.strip()
    if isinstance(ref, dict):
        for key in ("key", "field_key", "fieldKey", "field", "id"):
            value = ref.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def _ref_width(ref: Any, columns: int) -> int:
    if not isinstance(ref, dict):
        return 1
    width = as_int(ref.get("width"))
    if width is None:
        width = as_int(ref.get("colSpan"))
    if width is None or width < 1:
        return 1
    return min(width, columns)


def _section_refs(section: dict) -> list:
    for key in ("fields", "rows", "fieldKeys", "items"):
        value = section.get(key)
        if isinstance(value, list):
            return value
    return []


def _builtin(key: str) -> dict:
    for field in BUILTIN_FIELDS:
        if field["key"] == key:
            return {"key": key, "label": field["label"], "type": "builtin"}
    return {"key": key, "type": "builtin"}


def _resolve(key: str, by_key: Dict[str, dict]) -> dict:
    if key in by_key:
        return by_key[key]
    canonical = to_snake_case(key)
    if canonical in by_key:
        return by_key[canonical]
    if key in BUILTIN_KEYS:
        return _builtin(key)
    return {"key": key, "type": "builtin"}


def compile_section(section: Any, index: int, by_key: Dict[str, dict]) -> dict | None:
    if not isinstance(section, dict):
        return None
    columns = section_columns(section)
    rows: List[dict] = []
    for ref in _section_refs(section):
        if isinstance(ref, dict) and ref.get("visible") is False:
            continue
        key = _ref_key(ref)
        if not key:
            continue
        rows.append({"key": key, "width": _ref_width(ref, columns), "field": _resolve(key, by_key)})
    if not rows:
        return None
    return {
        "id": str(section.get("id") or f"widget-{index + 1}"),
        "title": str(section.get("title") or f"Widget {index + 1}"),
        "description": str(section.get("description") or ""),
        "columns": columns,
        "fields": rows,
    }


def compile_layout(fields: Any, view_config: Any) -> list[dict]:
    declared = [f for f in fields or [] if isinstance(f, dict) and f.get("key")]
    by_key = {f["key"]: f for f in declared}
    sections = raw_sections(view_config)
    if sections is None:
        return [
            {
                **FALLBACK_SECTION,
                "description": "",
                "fields": [{"key": f["key"], "width": 1, "field": f} for f in declared],
            }
        ]
    compiled = []
    for idx, section in enumerate(sections):
        item = compile_section(section, idx, by_key)
        if item is not None:
            compiled.append(item)
    return compiled
