"""DB-backed stores: schema registry, entries, editor views and users."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable

import psycopg2

from app.db import execute, fetch_all, fetch_one, get_conn, is_unique_violation
from app.relations import is_uuid
from schema_registry import prepare_content_type, prepare_fields, present_field, sort_fields
from strata.canonical_json import ensure_json, payload_dumps
from strata.errors import ConflictError, NotFoundError, TransientStoreError


logger = logging.getLogger("strata.db")


SCHEMA_SQL = (
    (
        "content_types.ensure",
        """
        create table if not exists content_types (
          id uuid primary key,
          slug text not null unique,
          type text not null default 'content',
          label_singular text not null,
          label_plural text not null,
          description text not null default '',
          icon text not null default '',
          created_at timestamptz not null default now(),
          updated_at timestamptz not null default now()
        )
        """,
    ),
    (
        "content_fields.ensure",
        """
        create table if not exists content_fields (
          id uuid primary key,
          content_type_id uuid not null references content_types(id) on delete cascade,
          field_key text not null,
          label text not null,
          type text not null,
          required boolean not null default false,
          help_text text not null default '',
          order_index integer not null default 0,
          config jsonb not null default '{}'::jsonb,
          created_at timestamptz not null default now(),
          updated_at timestamptz not null default now(),
          unique (content_type_id, field_key)
        )
        """,
    ),
    (
        "entries.ensure",
        """
        create table if not exists entries (
          id uuid primary key,
          content_type_id uuid not null references content_types(id) on delete cascade,
          title text not null,
          slug text not null,
          status text not null default 'draft',
          data jsonb not null default '{}'::jsonb,
          created_at timestamptz not null default now(),
          updated_at timestamptz not null default now(),
          unique (content_type_id, slug)
        )
        """,
    ),
    (
        "entry_versions.ensure",
        """
        create table if not exists entry_versions (
          id uuid primary key,
          entry_id uuid not null references entries(id) on delete cascade,
          title text not null,
          slug text not null,
          status text not null,
          data jsonb not null default '{}'::jsonb,
          created_at timestamptz not null default now()
        )
        """,
    ),
    (
        "entry_editor_views.ensure",
        """
        create table if not exists entry_editor_views (
          id uuid primary key,
          content_type_id uuid not null references content_types(id) on delete cascade,
          slug text not null,
          label text not null,
          roles jsonb not null default '[]'::jsonb,
          default_roles jsonb not null default '[]'::jsonb,
          is_default boolean not null default false,
          priority integer not null default 0,
          config jsonb not null default '{}'::jsonb,
          created_at timestamptz not null default now(),
          updated_at timestamptz not null default now(),
          unique (content_type_id, slug)
        )
        """,
    ),
    (
        "users.ensure",
        """
        create table if not exists users (
          id uuid primary key,
          email text,
          name text,
          role text,
          status text not null default 'active'
        )
        """,
    ),
    (
        "entries.ensure_type_idx",
        "create index if not exists entries_type_created_idx on entries (content_type_id, created_at desc)",
    ),
)


def ensure_schema() -> None:
    with get_conn() as conn:
        for name, sql in SCHEMA_SQL:
            execute(conn, sql, query_name=name)
    logger.info("db_schema_ready tables=%s", len([n for n, _ in SCHEMA_SQL if n.endswith(".ensure")]))


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _to_iso(value):
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value


def _row(row: dict | None, json_cols: Iterable[str] = ()) -> dict | None:
    if row is None:
        return None
    out = dict(row)
    for key in ("id", "content_type_id", "entry_id"):
        if out.get(key) is not None:
            out[key] = str(out[key])
    for key in ("created_at", "updated_at"):
        if key in out:
            out[key] = _to_iso(out[key])
    for key in json_cols:
        if out.get(key) is not None:
            out[key] = copy.deepcopy(ensure_json(out[key]))
    return out


class DbSchemaRegistry:
    def _find(self, conn, id_or_slug: str) -> dict | None:
        if is_uuid(id_or_slug):
            row = fetch_one(
                conn,
                "select * from content_types where id=%s",
                [str(id_or_slug)],
                query_name="content_types.get_by_id",
            )
            if row:
                return _row(row)
        row = fetch_one(
            conn,
            "select * from content_types where slug=%s",
            [id_or_slug],
            query_name="content_types.get_by_slug",
        )
        return _row(row)

    def _require(self, conn, id_or_slug: str) -> dict:
        record = self._find(conn, id_or_slug)
        if record is None:
            raise NotFoundError("Content type not found", "content_type_id", {"id": id_or_slug})
        return record

    def create_content_type(self, payload: dict) -> dict:
        values = prepare_content_type(payload)
        type_id = str(uuid.uuid4())
        now = _now()
        try:
            with get_conn() as conn:
                execute(
                    conn,
                    """
                    insert into content_types (id, slug, type, label_singular, label_plural, description, icon, created_at, updated_at)
                    values (%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    [
                        type_id,
                        values["slug"],
                        values["type"],
                        values["label_singular"],
                        values["label_plural"],
                        values["description"],
                        values["icon"],
                        now,
                        now,
                    ],
                    query_name="content_types.create",
                )
                if isinstance(payload.get("fields"), list):
                    self.replace_fields(type_id, payload["fields"])
        except psycopg2.Error as exc:
            if is_unique_violation(exc):
                raise ConflictError("Content type slug already exists", "slug", {"slug": values["slug"]}) from exc
            raise
        return self.get_content_type(type_id)

    def update_content_type(self, content_type_id: str, payload: dict) -> dict:
        try:
            with get_conn() as conn:
                current = self._require(conn, content_type_id)
                values = prepare_content_type(payload, current)
                if values["slug"] != current["slug"]:
                    row = fetch_one(
                        conn,
                        "select count(*) as n from entries where content_type_id=%s",
                        [current["id"]],
                        query_name="entries.count_for_type",
                    )
                    if row and row["n"] > 0:
                        raise ConflictError(
                            "Content type slug cannot change once entries exist",
                            "slug",
                            {"slug": current["slug"]},
                        )
                execute(
                    conn,
                    """
                    update content_types
                    set slug=%s, type=%s, label_singular=%s, label_plural=%s, description=%s, icon=%s, updated_at=%s
                    where id=%s
                    """,
                    [
                        values["slug"],
                        values["type"],
                        values["label_singular"],
                        values["label_plural"],
                        values["description"],
                        values["icon"],
                        _now(),
                        current["id"],
                    ],
                    query_name="content_types.update",
                )
                if isinstance(payload.get("fields"), list):
                    self.replace_fields(current["id"], payload["fields"])
        except psycopg2.Error as exc:
            if is_unique_violation(exc):
                raise ConflictError("Content type slug already exists", "slug", {"slug": payload.get("slug")}) from exc
            raise
        return self.get_content_type(current["id"])

    def get_content_type(self, id_or_slug: str, include_fields: bool = True) -> dict | None:
        with get_conn() as conn:
            record = self._find(conn, id_or_slug)
            if record is None:
                return None
            if include_fields:
                record["fields"] = self.get_fields(record["id"])
            return record

    def list_content_types(self, kind: str | None = None) -> list[dict]:
        with get_conn() as conn:
            if kind:
                rows = fetch_all(
                    conn,
                    "select * from content_types where type=%s order by lower(label_plural), slug",
                    [kind],
                    query_name="content_types.list_by_kind",
                )
            else:
                rows = fetch_all(
                    conn,
                    "select * from content_types order by lower(label_plural), slug",
                    query_name="content_types.list",
                )
        return [_row(r) for r in rows]

    def delete_content_type(self, content_type_id: str) -> bool:
        with get_conn() as conn:
            record = self._require(conn, content_type_id)
            execute(conn, "delete from content_types where id=%s", [record["id"]], query_name="content_types.delete")
        return True

    def replace_fields(self, content_type_id: str, fields: list) -> list[dict]:
        prepared = prepare_fields(fields)
        with get_conn() as conn:
            record = self._require(conn, content_type_id)
            existing = {
                r["field_key"]: str(r["id"])
                for r in fetch_all(
                    conn,
                    "select id, field_key from content_fields where content_type_id=%s",
                    [record["id"]],
                    query_name="content_fields.keys",
                )
            }
            keep = [f["field_key"] for f in prepared]
            execute(
                conn,
                "delete from content_fields where content_type_id=%s and not (field_key = any(%s))",
                [record["id"], keep],
                query_name="content_fields.delete_removed",
            )
            now = _now()
            for field in prepared:
                execute(
                    conn,
                    """
                    insert into content_fields
                      (id, content_type_id, field_key, label, type, required, help_text, order_index, config, created_at, updated_at)
                    values (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    on conflict (content_type_id, field_key) do update
                    set label=excluded.label, type=excluded.type, required=excluded.required,
                        help_text=excluded.help_text, order_index=excluded.order_index,
                        config=excluded.config, updated_at=excluded.updated_at
                    """,
                    [
                        existing.get(field["field_key"]) or str(uuid.uuid4()),
                        record["id"],
                        field["field_key"],
                        field["label"],
                        field["type"],
                        field["required"],
                        field["help_text"],
                        field["order_index"],
                        payload_dumps(field["config"]),
                        now,
                        now,
                    ],
                    query_name="content_fields.upsert",
                )
            execute(
                conn,
                "update content_types set updated_at=%s where id=%s",
                [now, record["id"]],
                query_name="content_types.touch",
            )
        return self.get_fields(record["id"])

    def get_fields(self, content_type_id: str) -> list[dict]:
        with get_conn() as conn:
            record = self._require(conn, content_type_id)
            rows = fetch_all(
                conn,
                """
                select id, content_type_id, field_key, label, type, required, help_text, order_index, config
                from content_fields
                where content_type_id=%s
                order by order_index, field_key
                """,
                [record["id"]],
                query_name="content_fields.list",
            )
        fields = [present_field(_row(r, ("config",))) for r in rows]
        return sort_fields([f for f in fields if f])


class DbEntryStore:
    _COLUMNS = "id, content_type_id, title, slug, status, data, created_at, updated_at"

    def _conflict(self, slug: str, exc: Exception) -> ConflictError:
        return ConflictError("Slug already exists for this content type", "slug", {"slug": slug, "error": str(exc)})

    def list(self, content_type_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"select {self._COLUMNS} from entries where content_type_id=%s order by created_at desc, id",
                [content_type_id],
                query_name="entries.list",
            )
        return [_row(r, ("data",)) for r in rows]

    def count(self, content_type_id: str) -> int:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "select count(*) as n from entries where content_type_id=%s",
                [content_type_id],
                query_name="entries.count_for_type",
            )
        return int(row["n"]) if row else 0

    def get(self, content_type_id: str, id_or_slug: str) -> dict | None:
        column = "id" if is_uuid(id_or_slug) else "slug"
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"select {self._COLUMNS} from entries where {column}=%s and content_type_id=%s limit 1",
                [str(id_or_slug).strip(), content_type_id],
                query_name=f"entries.get_by_{column}",
            )
        return _row(row, ("data",))

    def create(self, content_type_id: str, values: dict) -> dict:
        entry_id = str(uuid.uuid4())
        now = _now()
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    f"""
                    insert into entries (id, content_type_id, title, slug, status, data, created_at, updated_at)
                    values (%s,%s,%s,%s,%s,%s,%s,%s)
                    returning {self._COLUMNS}
                    """,
                    [
                        entry_id,
                        content_type_id,
                        values["title"],
                        values["slug"],
                        values.get("status") or "draft",
                        payload_dumps(values.get("data") or {}),
                        now,
                        now,
                    ],
                    query_name="entries.create",
                )
        except psycopg2.Error as exc:
            if is_unique_violation(exc):
                raise self._conflict(values["slug"], exc) from exc
            raise
        return _row(row, ("data",))

    def update(self, content_type_id: str, entry_id: str, values: dict) -> dict | None:
        try:
            with get_conn() as conn:
                execute(
                    conn,
                    """
                    insert into entry_versions (id, entry_id, title, slug, status, data, created_at)
                    select %s, id, title, slug, status, data, %s
                    from entries
                    where id=%s and content_type_id=%s
                    """,
                    [str(uuid.uuid4()), _now(), entry_id, content_type_id],
                    query_name="entry_versions.snapshot",
                )
                row = fetch_one(
                    conn,
                    f"""
                    update entries
                    set title=%s, slug=%s, status=%s, data=%s, updated_at=%s
                    where id=%s and content_type_id=%s
                    returning {self._COLUMNS}
                    """,
                    [
                        values["title"],
                        values["slug"],
                        values.get("status") or "draft",
                        payload_dumps(values.get("data") or {}),
                        _now(),
                        entry_id,
                        content_type_id,
                    ],
                    query_name="entries.update",
                )
        except psycopg2.Error as exc:
            if is_unique_violation(exc):
                raise self._conflict(values["slug"], exc) from exc
            raise
        return _row(row, ("data",))

    def delete(self, content_type_id: str, entry_id: str) -> bool:
        with get_conn() as conn:
            execute(conn, "delete from entry_versions where entry_id=%s", [entry_id], query_name="entry_versions.delete")
            count = execute(
                conn,
                "delete from entries where id=%s and content_type_id=%s",
                [entry_id, content_type_id],
                query_name="entries.delete",
            )
        return count > 0

    def delete_for_type(self, content_type_id: str) -> int:
        with get_conn() as conn:
            return execute(
                conn,
                "delete from entries where content_type_id=%s",
                [content_type_id],
                query_name="entries.delete_for_type",
            )

    def list_versions(self, entry_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                """
                select id, entry_id, title, slug, status, data, created_at
                from entry_versions
                where entry_id=%s
                order by created_at desc
                """,
                [entry_id],
                query_name="entry_versions.list",
            )
        return [_row(r, ("data",)) for r in rows]


class DbEditorViewStore:
    _COLUMNS = "id, content_type_id, slug, label, roles, default_roles, is_default, priority, config, created_at, updated_at"
    _JSON = ("roles", "default_roles", "config")

    def _params(self, values: dict) -> list:
        return [
            values["slug"],
            values["label"],
            payload_dumps(values.get("roles") or []),
            payload_dumps(values.get("default_roles") or []),
            bool(values.get("is_default")),
            int(values.get("priority") or 0),
            payload_dumps(values.get("config") or {}),
        ]

    def _clear_default(self, conn, content_type_id: str, keep_id: str) -> None:
        execute(
            conn,
            "update entry_editor_views set is_default=false where content_type_id=%s and id<>%s",
            [content_type_id, keep_id],
            query_name="entry_editor_views.clear_default",
        )

    def list(self, content_type_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"select {self._COLUMNS} from entry_editor_views where content_type_id=%s order by slug, id",
                [content_type_id],
                query_name="entry_editor_views.list",
            )
        return [_row(r, self._JSON) for r in rows]

    def get(self, content_type_id: str, view_id: str) -> dict | None:
        if not is_uuid(view_id):
            return None
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"select {self._COLUMNS} from entry_editor_views where id=%s and content_type_id=%s",
                [view_id, content_type_id],
                query_name="entry_editor_views.get",
            )
        return _row(row, self._JSON)

    def create(self, content_type_id: str, values: dict) -> dict:
        view_id = str(uuid.uuid4())
        now = _now()
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    f"""
                    insert into entry_editor_views
                      (slug, label, roles, default_roles, is_default, priority, config, id, content_type_id, created_at, updated_at)
                    values (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    returning {self._COLUMNS}
                    """,
                    self._params(values) + [view_id, content_type_id, now, now],
                    query_name="entry_editor_views.create",
                )
                if values.get("is_default"):
                    self._clear_default(conn, content_type_id, view_id)
        except psycopg2.Error as exc:
            if is_unique_violation(exc):
                raise ConflictError("Editor view slug already exists", "slug", {"slug": values["slug"]}) from exc
            raise
        return _row(row, self._JSON)

    def update(self, content_type_id: str, view_id: str, values: dict) -> dict | None:
        if not is_uuid(view_id):
            return None
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    f"""
                    update entry_editor_views
                    set slug=%s, label=%s, roles=%s, default_roles=%s, is_default=%s, priority=%s, config=%s, updated_at=%s
                    where id=%s and content_type_id=%s
                    returning {self._COLUMNS}
                    """,
                    self._params(values) + [_now(), view_id, content_type_id],
                    query_name="entry_editor_views.update",
                )
                if row and values.get("is_default"):
                    self._clear_default(conn, content_type_id, view_id)
        except psycopg2.Error as exc:
            if is_unique_violation(exc):
                raise ConflictError("Editor view slug already exists", "slug", {"slug": values["slug"]}) from exc
            raise
        return _row(row, self._JSON)

    def delete(self, content_type_id: str, view_id: str) -> bool:
        if not is_uuid(view_id):
            return False
        with get_conn() as conn:
            count = execute(
                conn,
                "delete from entry_editor_views where id=%s and content_type_id=%s",
                [view_id, content_type_id],
                query_name="entry_editor_views.delete",
            )
        return count > 0

    def delete_for_type(self, content_type_id: str) -> int:
        with get_conn() as conn:
            return execute(
                conn,
                "delete from entry_editor_views where content_type_id=%s",
                [content_type_id],
                query_name="entry_editor_views.delete_for_type",
            )


class DbUserStore:
    def get_many(self, ids: Iterable[str]) -> list[dict]:
        ids = [str(i) for i in ids if is_uuid(i)]
        if not ids:
            return []
        try:
            with get_conn() as conn:
                rows = fetch_all(
                    conn,
                    "select id, email, name, role, status from users where id = any(%s::uuid[])",
                    [ids],
                    query_name="users.get_many",
                )
        except psycopg2.Error as exc:
            raise TransientStoreError("User lookup failed", "users", {"error": str(exc)}) from exc
        return [_row(r) for r in rows]

    def upsert(self, user: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into users (id, email, name, role, status)
                values (%s,%s,%s,%s,%s)
                on conflict (id) do update
                set email=excluded.email, name=excluded.name, role=excluded.role, status=excluded.status
                returning id, email, name, role, status
                """,
                [
                    str(user.get("id") or uuid.uuid4()),
                    user.get("email"),
                    user.get("name"),
                    str(user.get("role") or "").upper() or None,
                    user.get("status") or "active",
                ],
                query_name="users.upsert",
            )
        return _row(row)
