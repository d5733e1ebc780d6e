"""Repeater row visibility rules.

A rule reads one sibling value (``ifKey``) from the current row, compares it
with ``value`` and, when it matches, shows or hides each of its ``targets``.
Rules run in declared order, so the last matching rule decides a target.
Evaluation never raises: malformed rules simply do not match.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable

from strata.canonical_json import canonical_dumps
from strata.field_types import normalize_rule, to_snake_case


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    if isinstance(value, dict):
        return len(value) == 0
    return False


def string_form(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(string_form(v) for v in value)
    if isinstance(value, dict):
        try:
            return canonical_dumps(value)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
        return num if math.isfinite(num) else None
    return None


def _compare(op: str, actual: Any, expected: Any) -> bool:
    na = as_number(actual)
    nb = as_number(expected)
    if na is not None and nb is not None:
        left, right = na, nb
    else:
        left, right = string_form(actual), string_form(expected)
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    return left <= right


def eval_rule(rule: dict | None, row: dict | None) -> bool:
    rule = normalize_rule(rule)
    if rule is None:
        return False
    if_key = rule["ifKey"]
    actual = row.get(if_key) if isinstance(row, dict) and if_key else None
    op = rule["op"]

    if op == "truthy":
        return not is_empty_value(actual)
    if op == "falsy":
        return is_empty_value(actual)

    expected = rule["value"]
    sa = string_form(actual)
    sb = string_form(expected)
    if op == "not_equals":
        return sa != sb
    if op == "contains":
        return sb.lower() in sa.lower()
    if op == "not_contains":
        return sb.lower() not in sa.lower()
    if op in {"gt", "gte", "lt", "lte"}:
        return _compare(op, actual, expected)
    # equals, and the fallback for unknown operators
    return sa == sb


def _subfield_key(subfield: Any) -> str:
    if isinstance(subfield, str):
        return to_snake_case(subfield)
    if isinstance(subfield, dict):
        return to_snake_case(subfield.get("key") or subfield.get("field_key"))
    return ""


def compute_visibility(subfields: Iterable[Any], rules: Iterable[Any] | None, row: dict | None) -> Dict[str, bool]:
    """Visibility for every declared subfield key of one row."""
    visible: Dict[str, bool] = {}
    for subfield in subfields or []:
        key = _subfield_key(subfield)
        if key:
            visible[key] = True

    for raw in rules or []:
        rule = normalize_rule(raw)
        if rule is None or not eval_rule(rule, row):
            continue
        show = rule["action"] != "hide"
        for target in rule["targets"]:
            if target in visible:
                visible[target] = show
    return visible
