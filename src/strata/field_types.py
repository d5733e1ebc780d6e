"""Field type catalogue and config normalization for content type schemas.

Stored field configs come in several historical shapes (``config`` vs
``options``, ``choices`` vs ``options``, camelCase keys, JSON strings). The
helpers here run once at read time and return a single canonical shape so
callers never look up aliases themselves.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List

FIELD_TYPES = (
    "text",
    "textarea",
    "number",
    "boolean",
    "date",
    "datetime",
    "time",
    "daterange",
    "email",
    "phone",
    "url",
    "address",
    "name",
    "rich_text",
    "image",
    "file",
    "video",
    "color",
    "tags",
    "radio",
    "dropdown",
    "multiselect",
    "checkbox",
    "relation",
    "relation_user",
    "taxonomy",
    "repeater",
    "json",
    "embeds",
    "price",
    "video_embed",
    "iframe_embed",
)

TYPE_ALIASES = {
    "select": "dropdown",
    "relationship": "relation",
}

CHOICE_TYPES = {"radio", "dropdown", "multiselect", "checkbox", "tags"}

SUBFIELD_MAP: Dict[str, Dict[str, str]] = {
    "name": {
        "title": "Title",
        "first": "First",
        "middle": "Middle",
        "last": "Last",
        "suffix": "Suffix",
    },
    "address": {
        "line1": "Address line 1",
        "line2": "Address line 2",
        "city": "City",
        "state": "State / Province",
        "postal": "ZIP / Postal",
        "country": "Country",
    },
    "image": {
        "alt": "Alt text",
        "title": "Title",
        "caption": "Caption",
        "credit": "Credit",
    },
    "file": {
        "title": "Title",
        "caption": "Caption",
        "credit": "Credit",
    },
    "video": {
        "title": "Title",
        "caption": "Caption",
        "credit": "Credit",
    },
}

BUILTIN_FIELDS = (
    {"key": "title", "label": "Title"},
    {"key": "slug", "label": "Slug"},
    {"key": "status", "label": "Status"},
    {"key": "created_at", "label": "Created"},
    {"key": "updated_at", "label": "Updated"},
)
BUILTIN_KEYS = {f["key"] for f in BUILTIN_FIELDS}

USER_DISPLAY_MODES = {"name_email", "name", "email"}
RULE_OPERATORS = {
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "gt",
    "gte",
    "lt",
    "lte",
    "truthy",
    "falsy",
}
REPEATER_LAYOUTS = {"cards", "table"}
DEFAULT_MAX_DEPTH = 2

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")
_NON_KEY = re.compile(r"[^a-z0-9]+")
_SNAKE_PART = re.compile(r"_([a-z0-9])")


def to_snake_case(key: Any) -> str:
    """``firstName`` / ``First Name`` / ``first-name`` -> ``first_name``."""
    text = str(key or "").strip()
    if not text:
        return ""
    text = _CAMEL_BOUNDARY.sub(r"_\1", text).lower()
    return _NON_KEY.sub("_", text).strip("_")


def to_camel_case(key: Any) -> str:
    return _SNAKE_PART.sub(lambda m: m.group(1).upper(), str(key or ""))


def canonical_type(raw: Any) -> str:
    value = str(raw or "text").strip().lower()
    value = TYPE_ALIASES.get(value, value)
    return value if value in FIELD_TYPES else "text"


def _as_dict(value: Any) -> dict:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def raw_field_config(field: Any) -> dict:
    """Read a field's config from ``config`` first, then the legacy ``options`` object."""
    if not isinstance(field, dict):
        return {}
    cfg = _as_dict(field.get("config"))
    if cfg:
        return dict(cfg)
    legacy = field.get("options")
    if isinstance(legacy, dict):
        return dict(legacy)
    return {}


def _choice_pair(item: Any) -> dict | None:
    if item is None:
        return None
    if isinstance(item, (str, int, float, bool)):
        text = str(item)
        return {"value": text, "label": text}
    if isinstance(item, dict):
        value = None
        for key in ("value", "slug", "id", "key", "code", "name", "title", "label"):
            if item.get(key) is not None:
                value = item.get(key)
                break
        if value is None:
            return None
        label = value
        for key in ("label", "title", "name", "value", "slug", "id", "code"):
            if item.get(key) is not None:
                label = item.get(key)
                break
        return {"value": str(value), "label": str(label)}
    return None


def normalize_choices(raw: Any) -> list[dict]:
    if not isinstance(raw, list):
        return []
    out = []
    for item in raw:
        pair = _choice_pair(item)
        if pair is not None:
            out.append(pair)
    return out


def normalize_subfields_config(config: dict, field_type: str) -> dict:
    schema = SUBFIELD_MAP.get(field_type)
    out = dict(config)
    if not schema:
        return out
    current = out.get("subfields") if isinstance(out.get("subfields"), dict) else {}
    subfields = {}
    for key, default_label in schema.items():
        row = current.get(key) if isinstance(current.get(key), dict) else {}
        show = True if row.get("show") is None else bool(row.get("show"))
        label = row.get("label") if isinstance(row.get("label"), str) and row.get("label") else default_label
        subfields[key] = {"show": show, "label": label}
    out["subfields"] = subfields
    return out


def normalize_relation_user_config(config: dict) -> dict:
    out = dict(config)
    display = out.get("display")
    out["multiple"] = bool(out.get("multiple"))
    out["display"] = display if display in USER_DISPLAY_MODES else "name_email"
    out["roleFilter"] = str(out.get("roleFilter") or out.get("role_filter") or "").strip()
    only_active = out.get("onlyActive", out.get("only_active"))
    out["onlyActive"] = True if only_active is None else bool(only_active)
    out.pop("role_filter", None)
    out.pop("only_active", None)
    return out


def _pick_slug(value: Any) -> str | None:
    if isinstance(value, dict):
        for key in ("slug", "contentType", "relatedType", "content_type_slug", "id"):
            if value.get(key):
                return str(value.get(key))
        return None
    if value:
        return str(value)
    return None


def relation_target_slug(field: Any) -> str | None:
    """Target content type slug of a relation field across legacy config shapes."""
    cfg = raw_field_config(field)
    relation = cfg.get("relation") if isinstance(cfg.get("relation"), dict) else {}
    candidates = [
        relation.get("slug"),
        relation.get("content_type_slug"),
        relation.get("contentType"),
        relation.get("content_type"),
        relation.get("target"),
        cfg.get("relatedType"),
        cfg.get("contentType"),
        cfg.get("targetType"),
        cfg.get("target"),
    ]
    if isinstance(field, dict):
        candidates.extend([field.get("relatedType"), field.get("contentType")])
    for candidate in candidates:
        slug = _pick_slug(candidate)
        if slug:
            return slug
    return None


def normalize_rule(raw: Any) -> dict | None:
    """Canonical VisibilityRule: ``{ifKey, op, value, action, targets}``."""
    if not isinstance(raw, dict):
        return None
    if_key = raw.get("ifKey", raw.get("if_key", ""))
    op = raw.get("op", raw.get("operator"))
    value = raw.get("value", raw.get("comparisonValue"))
    targets = raw.get("targets", raw.get("targetKeys"))
    if isinstance(targets, str):
        targets = [targets]
    if not isinstance(targets, list):
        targets = []
    action = str(raw.get("action") or "show").strip().lower()
    return {
        "ifKey": to_snake_case(if_key),
        "op": str(op or "equals").strip(),
        "value": value,
        "action": "hide" if action == "hide" else "show",
        "targets": [key for key in (to_snake_case(t) for t in targets if t is not None) if key],
    }


def normalize_repeater_config(config: dict) -> dict:
    out = dict(config)
    min_rows = as_int(out.get("minRows", out.get("min_rows")))
    max_rows = as_int(out.get("maxRows", out.get("max_rows")))
    min_rows = max(min_rows, 0) if min_rows is not None else None
    if max_rows is not None:
        max_rows = max(max_rows, min_rows or 0)
    max_depth = as_int(out.get("maxDepth", out.get("max_depth")))
    layout = str(out.get("layout") or "cards").strip().lower()
    subfields = []
    seen = set()
    raw_subfields = out.get("subfields") if isinstance(out.get("subfields"), list) else []
    for idx, raw in enumerate(raw_subfields):
        sub = normalize_field(raw, idx)
        if sub is None or sub["key"] in seen:
            continue
        seen.add(sub["key"])
        subfields.append(sub)
    rules = []
    for raw in out.get("rules") if isinstance(out.get("rules"), list) else []:
        rule = normalize_rule(raw)
        if rule is not None:
            rules.append(rule)
    for legacy in ("min_rows", "max_rows", "max_depth"):
        out.pop(legacy, None)
    out.update(
        {
            "minRows": min_rows,
            "maxRows": max_rows,
            "addLabel": str(out.get("addLabel") or "Add row"),
            "layout": layout if layout in REPEATER_LAYOUTS else "cards",
            "maxDepth": max_depth if max_depth is not None and max_depth >= 1 else DEFAULT_MAX_DEPTH,
            "rowLabelTemplate": str(out.get("rowLabelTemplate") or ""),
            "subfields": subfields,
            "rules": rules,
        }
    )
    return out


def normalize_field_config(field_type: str, config: Any) -> dict:
    cfg = dict(config) if isinstance(config, dict) else _as_dict(config)
    if field_type in CHOICE_TYPES:
        raw = cfg.get("choices")
        if raw is None:
            raw = cfg.get("options")
        cfg["choices"] = normalize_choices(raw)
        cfg.pop("options", None)
    if field_type in SUBFIELD_MAP:
        cfg = normalize_subfields_config(cfg, field_type)
    if field_type == "relation_user":
        cfg = normalize_relation_user_config(cfg)
    if field_type == "relation":
        target = relation_target_slug({"config": cfg})
        if target:
            cfg["relatedType"] = target
    if field_type == "repeater":
        cfg = normalize_repeater_config(cfg)
    return cfg


def normalize_field(raw: Any, index: int = 0) -> dict | None:
    """Canonical FieldDefinition dict, or None when the input has no usable key."""
    if not isinstance(raw, dict):
        return None
    key = to_snake_case(raw.get("field_key") or raw.get("key") or raw.get("fieldKey") or "")
    if not key:
        return None
    field_type = canonical_type(raw.get("type"))
    order_index = as_int(raw.get("order_index", raw.get("orderIndex")))
    label = raw.get("label")
    return {
        "id": raw.get("id"),
        "key": key,
        "label": str(label).strip() if label is not None and str(label).strip() else key,
        "type": field_type,
        "required": bool(raw.get("required")),
        "help_text": str(raw.get("help_text") or raw.get("helpText") or ""),
        "order_index": order_index if order_index is not None else index,
        "config": normalize_field_config(field_type, raw_field_config(raw)),
    }


def normalize_fields(raw_fields: Any) -> list[dict]:
    if not isinstance(raw_fields, list):
        return []
    fields: List[dict] = []
    seen = set()
    for idx, raw in enumerate(raw_fields):
        field = normalize_field(raw, idx)
        if field is None or field["key"] in seen:
            continue
        seen.add(field["key"])
        fields.append(field)
    return sorted(fields, key=lambda f: (f["order_index"], f["key"]))
