"""Relation resolution for entry reads.

User references (``relation_user`` fields) are expanded eagerly: every entry
of a list/detail response carries ``_resolved = {userFields, usersById}``
built from a single batched user lookup. Entry-to-entry relations are left
as ids and resolved lazily through :func:`list_relation_options`.
"""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Iterable, List

from strata.field_types import normalize_relation_user_config, raw_field_config, relation_target_slug


logger = logging.getLogger("strata.relations")

CHOICE_SOURCE_TYPES = {"radio", "dropdown", "checkbox", "multiselect"}


def is_uuid(value: Any) -> bool:
    if not isinstance(value, (str, uuid.UUID)):
        return False
    try:
        uuid.UUID(str(value).strip())
        return True
    except ValueError:
        return False


def user_field_configs(fields: Iterable[dict]) -> dict:
    out = {}
    for field in fields or []:
        if not isinstance(field, dict) or field.get("type") != "relation_user":
            continue
        key = field.get("key") or field.get("field_key")
        if not key:
            continue
        cfg = normalize_relation_user_config(field.get("config") if isinstance(field.get("config"), dict) else {})
        out[key] = {
            "multiple": cfg["multiple"],
            "display": cfg["display"],
            "roleFilter": cfg["roleFilter"],
            "onlyActive": cfg["onlyActive"],
        }
    return out


def collect_user_ids(entries: Iterable[dict], user_fields: dict) -> List[str]:
    """Referenced user ids in first-seen order; values that are not UUIDs are skipped."""
    seen: dict[str, None] = {}
    for entry in entries:
        data = entry.get("data") if isinstance(entry, dict) and isinstance(entry.get("data"), dict) else {}
        for key in user_fields:
            value = data.get(key)
            values = value if isinstance(value, list) else [value]
            for item in values:
                if is_uuid(item):
                    seen.setdefault(str(item).strip(), None)
    return list(seen)


def _public_user(user: dict) -> dict:
    return {
        "id": str(user.get("id")),
        "email": user.get("email"),
        "name": user.get("name"),
        "role": user.get("role"),
        "status": user.get("status"),
    }


def resolve_entries(registry, users, content_type_id: str, entries: List[dict]) -> List[dict]:
    """Attach a resolution context to every entry; a failed lookup leaves ``usersById`` empty."""
    user_fields = user_field_configs(registry.get_fields(content_type_id)) if content_type_id else {}
    ids = collect_user_ids(entries, user_fields) if user_fields else []
    users_by_id: dict = {}
    if ids:
        try:
            for user in users.get_many(ids) or []:
                if isinstance(user, dict) and user.get("id") is not None:
                    users_by_id[str(user["id"])] = _public_user(user)
        except Exception as exc:
            logger.warning(
                "user_lookup_failed content_type_id=%s ids=%s error=%s",
                content_type_id,
                len(ids),
                exc,
            )
            users_by_id = {}
    for entry in entries:
        entry["_resolved"] = {
            "userFields": copy.deepcopy(user_fields),
            "usersById": copy.deepcopy(users_by_id),
        }
    return entries


def user_label(user: dict | None, display: str = "name_email") -> str:
    if not isinstance(user, dict):
        return ""
    name = str(user.get("name") or "").strip()
    email = str(user.get("email") or "").strip()
    if display == "email":
        return email or name
    if display == "name":
        return name or email
    if name and email:
        return f"{name} — {email}"
    return name or email


def choice_source_slug(field: dict) -> str | None:
    """Content type slug that feeds a dynamic choice field, if any."""
    if not isinstance(field, dict) or field.get("type") not in CHOICE_SOURCE_TYPES:
        return None
    cfg = raw_field_config(field)
    source = cfg.get("sourceType")
    if source:
        return str(source)
    return None


def dynamic_choices(field: dict, entries: Iterable[dict]) -> list[dict]:
    cfg = raw_field_config(field)
    source_field = str(cfg.get("sourceField") or "title")
    out = []
    for entry in entries:
        data = entry.get("data") if isinstance(entry.get("data"), dict) else {}
        value = data.get(source_field)
        if value is None:
            value = data.get("title", entry.get("title"))
        if value is None:
            value = entry.get("id")
        out.append({"value": str(value), "label": str(value)})
    return out


def inline_edit_fields(all_fields: Iterable[dict], config: dict | None) -> list[dict]:
    """Fields offered by a relation's inline editor; an empty allow-list means all."""
    cfg = config if isinstance(config, dict) else {}
    inline = cfg.get("inlineEdit") if isinstance(cfg.get("inlineEdit"), dict) else {}
    allowed = [str(k) for k in inline.get("fields") or [] if k] if isinstance(inline.get("fields"), list) else []
    fields = [f for f in all_fields or [] if isinstance(f, dict)]
    if not allowed:
        return fields
    return [f for f in fields if (f.get("key") or f.get("field_key")) in allowed]


def list_relation_options(registry, entries_store, target_slug: str) -> list[dict]:
    content_type = registry.get_content_type(target_slug, include_fields=False)
    if content_type is None:
        return []
    return [
        {"value": str(entry["id"]), "label": entry.get("title") or entry.get("slug") or str(entry["id"])}
        for entry in entries_store.list(content_type["id"])
    ]


def field_options(registry, entries_store, field: dict) -> dict:
    """Picker options for one field.

    A choice field with a ``sourceType`` lists values from that type's entries.
    A relation field also returns the fields its inline editor may show.
    """
    source = choice_source_slug(field)
    if source:
        content_type = registry.get_content_type(source, include_fields=False)
        entries = entries_store.list(content_type["id"]) if content_type else []
        return {"options": dynamic_choices(field, entries)}
    if field.get("type") == "relation":
        target = relation_target_slug(field)
        target_type = registry.get_content_type(target, include_fields=False) if target else None
        if target_type is None:
            return {"options": [], "inlineFields": []}
        return {
            "options": list_relation_options(registry, entries_store, target),
            "inlineFields": inline_edit_fields(registry.get_fields(target_type["id"]), raw_field_config(field)),
        }
    choices = raw_field_config(field).get("choices")
    return {"options": copy.deepcopy(choices) if isinstance(choices, list) else []}


__all__ = [
    "choice_source_slug",
    "collect_user_ids",
    "dynamic_choices",
    "field_options",
    "inline_edit_fields",
    "is_uuid",
    "list_relation_options",
    "relation_target_slug",
    "resolve_entries",
    "user_field_configs",
    "user_label",
]
