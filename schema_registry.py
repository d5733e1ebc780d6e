"""In-memory field schema registry for content types.

The registry is the single writer of schema. Content types and their field
lists are validated here, and field configs are normalized on the way out so
callers only ever see canonical shapes. ``app.stores_db.DbSchemaRegistry``
shares the payload helpers below and exposes the same interface.
"""

from __future__ import annotations

import copy
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from strata.errors import ConflictError, NotFoundError, ValidationError
from strata.field_types import as_int, canonical_type, normalize_field, raw_field_config, to_snake_case


CONTENT_KINDS = {"content", "taxonomy"}
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def pluralize(label: str) -> str:
    label = _text(label)
    if not label:
        return ""
    return label if label.lower().endswith("s") else f"{label}s"


def type_slug(text: Any) -> str:
    return _SLUG_STRIP.sub("_", str(text or "").strip().lower()).strip("_")


def prepare_content_type(payload: Any, existing: dict | None = None) -> dict:
    """Merge a create/update payload over ``existing`` and validate the result."""
    if not isinstance(payload, dict):
        raise ValidationError("Content type payload must be an object")
    base = dict(existing or {})
    singular = _text(payload.get("label_singular", payload.get("labelSingular", base.get("label_singular"))))
    plural = _text(payload.get("label_plural", payload.get("labelPlural", base.get("label_plural"))))
    if not plural:
        plural = pluralize(singular)
    slug = _text(payload.get("slug", base.get("slug")))
    slug = type_slug(slug) if slug else type_slug(plural)
    kind = _text(payload.get("type", payload.get("kind", base.get("type")))).lower() or "content"
    if not slug:
        raise ValidationError("Slug is required", "slug")
    if not singular:
        raise ValidationError("Singular label is required", "label_singular")
    if not plural:
        raise ValidationError("Plural label is required", "label_plural")
    if kind not in CONTENT_KINDS:
        raise ValidationError("Unknown content type kind", "type", {"kind": kind})
    return {
        "slug": slug,
        "type": kind,
        "label_singular": singular,
        "label_plural": plural,
        "description": _text(payload.get("description", base.get("description"))),
        "icon": _text(payload.get("icon", base.get("icon"))),
    }


def prepare_fields(raw_fields: Any) -> List[dict]:
    """Validate a full replacement field list; keys become snake_case."""
    if not isinstance(raw_fields, list):
        raise ValidationError("Fields must be a list", "fields")
    prepared: List[dict] = []
    seen: set[str] = set()
    for idx, raw in enumerate(raw_fields):
        path = f"fields[{idx}]"
        if not isinstance(raw, dict):
            raise ValidationError("Field must be an object", path)
        key = to_snake_case(raw.get("field_key") or raw.get("key") or raw.get("fieldKey"))
        if not key:
            raise ValidationError("Field key is required", f"{path}.field_key")
        label = _text(raw.get("label"))
        if not label:
            raise ValidationError("Field label is required", f"{path}.label", {"field_key": key})
        if key in seen:
            raise ValidationError("Duplicate field key", f"{path}.field_key", {"field_key": key})
        seen.add(key)
        order_index = as_int(raw.get("order_index", raw.get("orderIndex")))
        prepared.append(
            {
                "field_key": key,
                "label": label,
                "type": canonical_type(raw.get("type")),
                "required": bool(raw.get("required")),
                "help_text": _text(raw.get("help_text", raw.get("helpText"))),
                "order_index": order_index if order_index is not None else idx,
                "config": raw_field_config(raw),
            }
        )
    return prepared


def present_field(stored: dict) -> dict:
    """Stored field row -> FieldDefinition with normalized config."""
    field = normalize_field(stored, as_int(stored.get("order_index")) or 0)
    if field is None:
        return {}
    field["id"] = stored.get("id")
    field["field_key"] = field["key"]
    field["content_type_id"] = stored.get("content_type_id")
    return field


def sort_fields(fields: List[dict]) -> List[dict]:
    return sorted(fields, key=lambda f: (f.get("order_index") or 0, f.get("key") or ""))


class FieldSchemaRegistry:
    def __init__(self, entry_count: Callable[[str], int] | None = None) -> None:
        self._types: Dict[str, dict] = {}
        self._fields: Dict[str, Dict[str, dict]] = {}
        self._entry_count = entry_count

    def bind_entry_count(self, entry_count: Callable[[str], int]) -> None:
        self._entry_count = entry_count

    def _find(self, id_or_slug: str) -> dict | None:
        record = self._types.get(id_or_slug)
        if record is not None:
            return record
        for item in self._types.values():
            if item["slug"] == id_or_slug:
                return item
        return None

    def _require(self, id_or_slug: str) -> dict:
        record = self._find(id_or_slug)
        if record is None:
            raise NotFoundError("Content type not found", "content_type_id", {"id": id_or_slug})
        return record

    def _check_slug(self, slug: str, own_id: str | None = None) -> None:
        for item in self._types.values():
            if item["slug"] == slug and item["id"] != own_id:
                raise ConflictError("Content type slug already exists", "slug", {"slug": slug})

    def create_content_type(self, payload: dict) -> dict:
        values = prepare_content_type(payload)
        self._check_slug(values["slug"])
        now = _now()
        record = {"id": str(uuid.uuid4()), **values, "created_at": now, "updated_at": now}
        self._types[record["id"]] = copy.deepcopy(record)
        self._fields[record["id"]] = {}
        if isinstance(payload.get("fields"), list):
            self.replace_fields(record["id"], payload["fields"])
        return self.get_content_type(record["id"])

    def update_content_type(self, content_type_id: str, payload: dict) -> dict:
        current = self._require(content_type_id)
        values = prepare_content_type(payload, current)
        if values["slug"] != current["slug"]:
            self._check_slug(values["slug"], current["id"])
            if self._entry_count and self._entry_count(current["id"]) > 0:
                raise ConflictError(
                    "Content type slug cannot change once entries exist",
                    "slug",
                    {"slug": current["slug"]},
                )
        current.update(values)
        current["updated_at"] = _now()
        if isinstance(payload.get("fields"), list):
            self.replace_fields(current["id"], payload["fields"])
        return self.get_content_type(current["id"])

    def get_content_type(self, id_or_slug: str, include_fields: bool = True) -> dict | None:
        record = self._find(id_or_slug)
        if record is None:
            return None
        out = copy.deepcopy(record)
        if include_fields:
            out["fields"] = self.get_fields(record["id"])
        return out

    def list_content_types(self, kind: str | None = None) -> list[dict]:
        items = [copy.deepcopy(t) for t in self._types.values() if kind is None or t["type"] == kind]
        return sorted(items, key=lambda t: (t["label_plural"].lower(), t["slug"]))

    def delete_content_type(self, content_type_id: str) -> bool:
        record = self._require(content_type_id)
        del self._types[record["id"]]
        self._fields.pop(record["id"], None)
        return True

    def replace_fields(self, content_type_id: str, fields: list) -> list[dict]:
        record = self._require(content_type_id)
        prepared = prepare_fields(fields)
        existing = self._fields.get(record["id"], {})
        now = _now()
        updated: Dict[str, dict] = {}
        for field in prepared:
            previous = existing.get(field["field_key"])
            updated[field["field_key"]] = {
                "id": previous["id"] if previous else str(uuid.uuid4()),
                "content_type_id": record["id"],
                **copy.deepcopy(field),
                "created_at": previous["created_at"] if previous else now,
                "updated_at": now,
            }
        self._fields[record["id"]] = updated
        record["updated_at"] = now
        return self.get_fields(record["id"])

    def get_fields(self, content_type_id: str) -> list[dict]:
        record = self._require(content_type_id)
        stored = self._fields.get(record["id"], {})
        fields = [present_field(copy.deepcopy(f)) for f in stored.values()]
        return sort_fields([f for f in fields if f])
