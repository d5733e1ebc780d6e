"""Repeater rows: bounded row operations, row labels and depth-aware evaluation."""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List

from strata.field_types import normalize_field_config, to_camel_case
from visibility_eval import compute_visibility


_ROW_INDEX_TOKEN = "{#}"
_KEY_TOKEN = re.compile(r"\{([^}]+)\}")


def repeater_config(field_or_config: Any) -> dict:
    """Accept a field dict, a raw config dict, or an already normalized config."""
    if isinstance(field_or_config, dict) and field_or_config.get("type") == "repeater" and "config" in field_or_config:
        return normalize_field_config("repeater", field_or_config.get("config"))
    return normalize_field_config("repeater", field_or_config if isinstance(field_or_config, dict) else {})


def coerce_rows(value: Any) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [dict(row) if isinstance(row, dict) else {} for row in value]


def can_add(config: dict, rows: List[dict]) -> bool:
    max_rows = config.get("maxRows")
    return max_rows is None or len(rows) < max_rows


def can_remove(config: dict, rows: List[dict]) -> bool:
    min_rows = config.get("minRows")
    return min_rows is None or len(rows) > min_rows


def append_row(config: dict, rows: Any, row: dict | None = None) -> List[dict]:
    current = coerce_rows(rows)
    if not can_add(config, current):
        return current
    return current + [copy.deepcopy(row) if isinstance(row, dict) else {}]


def remove_row(config: dict, rows: Any, index: int) -> List[dict]:
    current = coerce_rows(rows)
    if not can_remove(config, current) or index < 0 or index >= len(current):
        return current
    return current[:index] + current[index + 1 :]


def duplicate_row(config: dict, rows: Any, index: int) -> List[dict]:
    current = coerce_rows(rows)
    if not can_add(config, current) or index < 0 or index >= len(current):
        return current
    clone = copy.deepcopy(current[index])
    return current[: index + 1] + [clone] + current[index + 1 :]


def move_row(rows: Any, index: int, direction: str | int) -> List[dict]:
    current = coerce_rows(rows)
    step = -1 if direction in ("up", -1) else 1
    target = index + step
    if index < 0 or index >= len(current) or target < 0 or target >= len(current):
        return current
    current[index], current[target] = current[target], current[index]
    return current


def update_row(rows: Any, index: int, patch: dict) -> List[dict]:
    current = coerce_rows(rows)
    if index < 0 or index >= len(current) or not isinstance(patch, dict):
        return current
    merged = dict(current[index])
    merged.update(copy.deepcopy(patch))
    current[index] = merged
    return current


def apply_row_op(config: dict, rows: Any, op: dict) -> List[dict]:
    if not isinstance(op, dict):
        return coerce_rows(rows)
    kind = op.get("op")
    index = op.get("index") if isinstance(op.get("index"), int) else -1
    if kind == "append":
        return append_row(config, rows, op.get("row"))
    if kind == "remove":
        return remove_row(config, rows, index)
    if kind == "duplicate":
        return duplicate_row(config, rows, index)
    if kind in ("move_up", "move_down"):
        return move_row(rows, index, "up" if kind == "move_up" else "down")
    if kind == "update":
        return update_row(rows, index, op.get("patch") or {})
    return coerce_rows(rows)


def row_label(template: Any, row: dict | None, index: int) -> str:
    text = str(template or "").strip()
    if not text:
        return f"Row {index + 1}"
    text = text.replace(_ROW_INDEX_TOKEN, str(index + 1))
    row = row if isinstance(row, dict) else {}

    def _sub(match: re.Match) -> str:
        key = match.group(1).strip()
        if not key:
            return ""
        value = row.get(key)
        return "" if value is None else str(value)

    return _KEY_TOKEN.sub(_sub, text)


def align_row_keys(subfields: List[dict], row: dict) -> dict:
    """Move camelCase row keys onto their snake_case subfield keys."""
    aligned = dict(row)
    for sub in subfields:
        key = sub["key"]
        alias = to_camel_case(key)
        if alias != key and alias in aligned:
            value = aligned.pop(alias)
            aligned.setdefault(key, value)
    return aligned


def can_nest(config: dict, depth: int) -> bool:
    return depth < config.get("maxDepth", 1)


def _is_inert(subfield: dict, config: dict, depth: int) -> bool:
    return subfield.get("type") == "repeater" and not can_nest(config, depth)


def evaluate_rows(config: dict, rows: Any, depth: int = 1) -> List[dict]:
    """Per-row label and cell visibility; inert nested repeaters are not evaluated."""
    subfields = config.get("subfields") or []
    rules = config.get("rules") or []
    out: List[dict] = []
    for index, row in enumerate(coerce_rows(rows)):
        row = align_row_keys(subfields, row)
        visible = compute_visibility(subfields, rules, row)
        cells: List[Dict[str, Any]] = []
        for sub in subfields:
            key = sub["key"]
            if _is_inert(sub, config, depth):
                cells.append(
                    {
                        "key": key,
                        "type": "repeater",
                        "inert": True,
                        "visible": None,
                        "message": f"Nested repeater disabled at depth {depth}",
                    }
                )
                continue
            cell: Dict[str, Any] = {
                "key": key,
                "type": sub.get("type"),
                "inert": False,
                "visible": visible.get(key, True),
            }
            if cell["visible"]:
                cell["value"] = copy.deepcopy(row.get(key))
                if sub.get("type") == "repeater":
                    cell["repeater"] = evaluate_repeater(sub.get("config") or {}, row.get(key), depth + 1)
            cells.append(cell)
        out.append({"index": index, "label": row_label(config.get("rowLabelTemplate"), row, index), "cells": cells})
    return out


def evaluate_repeater(field_or_config: Any, value: Any, depth: int = 1) -> dict:
    config = repeater_config(field_or_config)
    rows = coerce_rows(value)
    return {
        "depth": depth,
        "layout": config["layout"],
        "addLabel": config["addLabel"],
        "minRows": config["minRows"],
        "maxRows": config["maxRows"],
        "canAdd": can_add(config, rows),
        "canRemove": can_remove(config, rows),
        "columns": [{"key": s["key"], "label": s.get("label") or s["key"]} for s in config["subfields"]],
        "rows": evaluate_rows(config, rows, depth),
    }


def prune_rows(config: dict, rows: Any, depth: int = 1) -> Any:
    """Drop data held under inert nested repeaters; hidden values are kept."""
    if not isinstance(rows, list):
        return rows
    subfields = config.get("subfields") or []
    pruned = []
    for row in rows:
        if not isinstance(row, dict):
            pruned.append(row)
            continue
        clean = align_row_keys(subfields, row)
        for sub in subfields:
            if sub.get("type") != "repeater":
                continue
            key = sub["key"]
            if not can_nest(config, depth):
                clean.pop(key, None)
            elif key in clean:
                nested = repeater_config(sub.get("config") or {})
                clean[key] = prune_rows(nested, clean[key], depth + 1)
        pruned.append(clean)
    return pruned
