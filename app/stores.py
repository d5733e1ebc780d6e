"""In-memory stores for entries, editor views and users."""

from __future__ import annotations

import copy
import itertools
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from app.relations import is_uuid
from strata.errors import ConflictError


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


ENTRY_STATUSES = ("draft", "published", "archived")


class MemoryEntryStore:
    def __init__(self) -> None:
        self._entries: Dict[str, dict] = {}
        self._versions: Dict[str, List[dict]] = {}
        self._seq = itertools.count(1)
        self._order: Dict[str, int] = {}

    def _slug_taken(self, content_type_id: str, slug: str, own_id: str | None = None) -> bool:
        for entry in self._entries.values():
            if entry["content_type_id"] == content_type_id and entry["slug"] == slug and entry["id"] != own_id:
                return True
        return False

    def _conflict(self, slug: str) -> ConflictError:
        return ConflictError("Slug already exists for this content type", "slug", {"slug": slug})

    def list(self, content_type_id: str) -> list[dict]:
        items = [e for e in self._entries.values() if e["content_type_id"] == content_type_id]
        items.sort(key=lambda e: (e["created_at"], self._order[e["id"]]), reverse=True)
        return [copy.deepcopy(e) for e in items]

    def count(self, content_type_id: str) -> int:
        return sum(1 for e in self._entries.values() if e["content_type_id"] == content_type_id)

    def get(self, content_type_id: str, id_or_slug: str) -> dict | None:
        for entry in self._entries.values():
            if entry["content_type_id"] != content_type_id:
                continue
            if is_uuid(id_or_slug):
                if entry["id"] == str(id_or_slug).strip().lower():
                    return copy.deepcopy(entry)
            elif entry["slug"] == id_or_slug:
                return copy.deepcopy(entry)
        return None

    def create(self, content_type_id: str, values: dict) -> dict:
        if self._slug_taken(content_type_id, values["slug"]):
            raise self._conflict(values["slug"])
        now = _now()
        entry = {
            "id": str(uuid.uuid4()),
            "content_type_id": content_type_id,
            "title": values["title"],
            "slug": values["slug"],
            "status": values.get("status") or "draft",
            "data": copy.deepcopy(values.get("data") or {}),
            "created_at": now,
            "updated_at": now,
        }
        self._entries[entry["id"]] = entry
        self._order[entry["id"]] = next(self._seq)
        return copy.deepcopy(entry)

    def update(self, content_type_id: str, entry_id: str, values: dict) -> dict | None:
        entry = self._entries.get(entry_id)
        if entry is None or entry["content_type_id"] != content_type_id:
            return None
        if self._slug_taken(content_type_id, values["slug"], entry_id):
            raise self._conflict(values["slug"])
        self._versions.setdefault(entry_id, []).insert(
            0,
            {
                "id": str(uuid.uuid4()),
                "entry_id": entry_id,
                "title": entry["title"],
                "slug": entry["slug"],
                "status": entry["status"],
                "data": copy.deepcopy(entry["data"]),
                "created_at": _now(),
            },
        )
        entry.update(
            {
                "title": values["title"],
                "slug": values["slug"],
                "status": values.get("status") or "draft",
                "data": copy.deepcopy(values.get("data") or {}),
                "updated_at": _now(),
            }
        )
        return copy.deepcopy(entry)

    def delete(self, content_type_id: str, entry_id: str) -> bool:
        entry = self._entries.get(entry_id)
        if entry is None or entry["content_type_id"] != content_type_id:
            return False
        self._versions.pop(entry_id, None)
        del self._entries[entry_id]
        self._order.pop(entry_id, None)
        return True

    def delete_for_type(self, content_type_id: str) -> int:
        ids = [e["id"] for e in self._entries.values() if e["content_type_id"] == content_type_id]
        for entry_id in ids:
            self.delete(content_type_id, entry_id)
        return len(ids)

    def list_versions(self, entry_id: str) -> list[dict]:
        return copy.deepcopy(self._versions.get(entry_id, []))


class MemoryEditorViewStore:
    def __init__(self) -> None:
        self._views: Dict[str, dict] = {}

    def _check_slug(self, content_type_id: str, slug: str, own_id: str | None = None) -> None:
        for view in self._views.values():
            if view["content_type_id"] == content_type_id and view["slug"] == slug and view["id"] != own_id:
                raise ConflictError("Editor view slug already exists", "slug", {"slug": slug})

    def _clear_default(self, content_type_id: str, keep_id: str) -> None:
        for view in self._views.values():
            if view["content_type_id"] == content_type_id and view["id"] != keep_id:
                view["is_default"] = False

    def list(self, content_type_id: str) -> list[dict]:
        items = [v for v in self._views.values() if v["content_type_id"] == content_type_id]
        return [copy.deepcopy(v) for v in sorted(items, key=lambda v: (v["slug"], v["id"]))]

    def get(self, content_type_id: str, view_id: str) -> dict | None:
        view = self._views.get(view_id)
        if view is None or view["content_type_id"] != content_type_id:
            return None
        return copy.deepcopy(view)

    def create(self, content_type_id: str, values: dict) -> dict:
        self._check_slug(content_type_id, values["slug"])
        now = _now()
        view = {"id": str(uuid.uuid4()), "content_type_id": content_type_id, **copy.deepcopy(values)}
        view["created_at"] = now
        view["updated_at"] = now
        self._views[view["id"]] = view
        if view.get("is_default"):
            self._clear_default(content_type_id, view["id"])
        return copy.deepcopy(view)

    def update(self, content_type_id: str, view_id: str, values: dict) -> dict | None:
        view = self._views.get(view_id)
        if view is None or view["content_type_id"] != content_type_id:
            return None
        self._check_slug(content_type_id, values["slug"], view_id)
        view.update(copy.deepcopy(values))
        view["updated_at"] = _now()
        if view.get("is_default"):
            self._clear_default(content_type_id, view_id)
        return copy.deepcopy(view)

    def delete(self, content_type_id: str, view_id: str) -> bool:
        view = self._views.get(view_id)
        if view is None or view["content_type_id"] != content_type_id:
            return False
        del self._views[view_id]
        return True

    def delete_for_type(self, content_type_id: str) -> int:
        ids = [v["id"] for v in self._views.values() if v["content_type_id"] == content_type_id]
        for view_id in ids:
            del self._views[view_id]
        return len(ids)


class MemoryUserStore:
    def __init__(self, users: Iterable[dict] | None = None) -> None:
        self._users: Dict[str, dict] = {}
        for user in users or []:
            self.upsert(user)

    def upsert(self, user: dict) -> dict:
        record = {
            "id": str(user.get("id") or uuid.uuid4()),
            "email": user.get("email"),
            "name": user.get("name"),
            "role": str(user.get("role") or "").upper() or None,
            "status": user.get("status") or "active",
        }
        self._users[record["id"]] = record
        return copy.deepcopy(record)

    def get_many(self, ids: Iterable[str]) -> list[dict]:
        return [copy.deepcopy(self._users[i]) for i in ids if i in self._users]

    def list(self) -> list[dict]:
        return [copy.deepcopy(u) for u in self._users.values()]
