"""Entry service: the write path (normalize, title, persist) and the read path (resolve)."""

from __future__ import annotations

import logging
from typing import Any

from app.editor_views import effective_core
from app.entry_normalize import normalize_entry_data
from app.list_format import display_map
from app.relations import field_options, list_relation_options, resolve_entries
from app.stores import ENTRY_STATUSES
from strata.errors import NotFoundError, ValidationError
from strata.field_types import to_snake_case
from title_template import apply_title_policy


logger = logging.getLogger("strata.entries")


class EntryService:
    def __init__(self, registry, entries, views, users) -> None:
        self.registry = registry
        self.entries = entries
        self.views = views
        self.users = users

    def content_type(self, type_slug: str) -> dict:
        content_type = self.registry.get_content_type(type_slug, include_fields=False)
        if content_type is None:
            raise NotFoundError("Content type not found", "type_slug", {"slug": type_slug})
        return content_type

    def _resolve(self, content_type_id: str, entries: list[dict]) -> list[dict]:
        return resolve_entries(self.registry, self.users, content_type_id, entries)

    def _require_entry(self, content_type_id: str, id_or_slug: str) -> dict:
        entry = self.entries.get(content_type_id, id_or_slug)
        if entry is None:
            raise NotFoundError("Entry not found", "id", {"id": id_or_slug})
        return entry

    def list_entries(self, type_slug: str, display: bool = False) -> list[dict]:
        content_type = self.content_type(type_slug)
        entries = self._resolve(content_type["id"], self.entries.list(content_type["id"]))
        if display:
            fields = self.registry.get_fields(content_type["id"])
            for entry in entries:
                entry["_display"] = display_map(fields, entry.get("data"), entry.get("_resolved"))
        return entries

    def options(self, type_slug: str, field_key: str | None = None) -> dict:
        """Entry options of a type, or the picker options of one of its fields."""
        content_type = self.content_type(type_slug)
        if not field_key:
            return {"options": list_relation_options(self.registry, self.entries, type_slug)}
        key = to_snake_case(field_key)
        for field in self.registry.get_fields(content_type["id"]):
            if field.get("key") == key:
                return field_options(self.registry, self.entries, field)
        raise NotFoundError("Field not found", "field", {"field": field_key})

    def get_entry(self, type_slug: str, id_or_slug: str) -> dict:
        content_type = self.content_type(type_slug)
        entry = self._require_entry(content_type["id"], id_or_slug)
        return self._resolve(content_type["id"], [entry])[0]

    def _prepare(self, content_type_id: str, payload: Any, role: str) -> dict:
        if not isinstance(payload, dict):
            raise ValidationError("Entry payload must be an object")
        data = payload.get("data")
        if data is not None and not isinstance(data, dict):
            raise ValidationError("Entry data must be an object", "data")
        status = payload.get("status")
        status = status.strip() if isinstance(status, str) and status.strip() else "draft"
        if status not in ENTRY_STATUSES:
            raise ValidationError("Unknown entry status", "status", {"status": status})
        fields = self.registry.get_fields(content_type_id)
        normalized = normalize_entry_data(fields, data or {})
        core = effective_core(self.views.list(content_type_id), role)
        title, slug = apply_title_policy(core, payload.get("title"), payload.get("slug"), normalized)
        return {"title": title, "slug": slug, "status": status, "data": normalized}

    def create_entry(self, type_slug: str, payload: Any, role: str) -> dict:
        content_type = self.content_type(type_slug)
        values = self._prepare(content_type["id"], payload, role)
        entry = self.entries.create(content_type["id"], values)
        logger.info("entry_created type=%s id=%s slug=%s", content_type["slug"], entry["id"], entry["slug"])
        return self._resolve(content_type["id"], [entry])[0]

    def update_entry(self, type_slug: str, id_or_slug: str, payload: Any, role: str) -> dict:
        content_type = self.content_type(type_slug)
        current = self._require_entry(content_type["id"], id_or_slug)
        values = self._prepare(content_type["id"], payload, role)
        entry = self.entries.update(content_type["id"], current["id"], values)
        if entry is None:
            raise NotFoundError("Entry not found", "id", {"id": id_or_slug})
        logger.info("entry_updated type=%s id=%s slug=%s", content_type["slug"], entry["id"], entry["slug"])
        return self._resolve(content_type["id"], [entry])[0]

    def delete_entry(self, type_slug: str, id_or_slug: str) -> None:
        content_type = self.content_type(type_slug)
        current = self._require_entry(content_type["id"], id_or_slug)
        if not self.entries.delete(content_type["id"], current["id"]):
            raise NotFoundError("Entry not found", "id", {"id": id_or_slug})
        logger.info("entry_deleted type=%s id=%s", content_type["slug"], current["id"])

    def list_versions(self, type_slug: str, id_or_slug: str) -> list[dict]:
        content_type = self.content_type(type_slug)
        current = self._require_entry(content_type["id"], id_or_slug)
        return self.entries.list_versions(current["id"])
