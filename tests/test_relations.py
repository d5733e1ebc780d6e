import os
import sys
import unittest
import uuid


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
for path in (ROOT, SRC):
    if path not in sys.path:
        sys.path.insert(0, path)

from app.relations import (
    choice_source_slug,
    collect_user_ids,
    dynamic_choices,
    field_options,
    inline_edit_fields,
    is_uuid,
    list_relation_options,
    resolve_entries,
    user_label,
)
from app.stores import MemoryEntryStore, MemoryUserStore
from schema_registry import FieldSchemaRegistry


ADA = str(uuid.uuid4())
GRACE = str(uuid.uuid4())


class _FailingUsers:
    def __init__(self) -> None:
        self.calls = 0

    def get_many(self, ids):
        self.calls += 1
        raise ConnectionError("user directory unavailable")


class _CountingUsers(MemoryUserStore):
    def __init__(self, users) -> None:
        super().__init__(users)
        self.calls = 0

    def get_many(self, ids):
        self.calls += 1
        return super().get_many(ids)


class TestResolveEntries(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = FieldSchemaRegistry()
        self.content_type = self.registry.create_content_type(
            {
                "slug": "posts",
                "label_singular": "Post",
                "fields": [
                    {"key": "author", "label": "Author", "type": "relation_user"},
                    {"key": "reviewers", "label": "Reviewers", "type": "relation_user", "config": {"multiple": True}},
                    {"key": "body", "label": "Body"},
                ],
            }
        )
        self.entries = [
            {"id": "1", "data": {"author": ADA, "reviewers": [GRACE, "not-a-uuid"]}},
            {"id": "2", "data": {"author": ADA}},
            {"id": "3", "data": {}},
        ]

    def test_single_batched_lookup(self) -> None:
        users = _CountingUsers([{"id": ADA, "name": "Ada", "email": "ada@example.com"}, {"id": GRACE, "name": "Grace"}])
        out = resolve_entries(self.registry, users, self.content_type["id"], self.entries)
        self.assertEqual(users.calls, 1)
        resolved = out[0]["_resolved"]
        self.assertEqual(set(resolved["usersById"]), {ADA, GRACE})
        self.assertEqual(resolved["userFields"]["reviewers"]["multiple"], True)
        self.assertEqual(resolved["userFields"]["author"]["display"], "name_email")

    def test_every_entry_gets_context(self) -> None:
        out = resolve_entries(self.registry, MemoryUserStore(), self.content_type["id"], self.entries)
        for entry in out:
            self.assertIn("_resolved", entry)
            self.assertEqual(entry["_resolved"]["usersById"], {})

    def test_lookup_failure_degrades_to_empty_map(self) -> None:
        users = _FailingUsers()
        with self.assertLogs("strata.relations", level="WARNING"):
            out = resolve_entries(self.registry, users, self.content_type["id"], self.entries)
        self.assertEqual(users.calls, 1)
        self.assertEqual(len(out), 3)
        self.assertEqual(out[0]["_resolved"]["usersById"], {})
        self.assertIn("author", out[0]["_resolved"]["userFields"])

    def test_no_lookup_without_user_ids(self) -> None:
        users = _FailingUsers()
        resolve_entries(self.registry, users, self.content_type["id"], [{"id": "9", "data": {"body": "x"}}])
        self.assertEqual(users.calls, 0)

    def test_collect_user_ids_is_ordered_and_unique(self) -> None:
        fields = {"author": {}, "reviewers": {}}
        self.assertEqual(collect_user_ids(self.entries, fields), [ADA, GRACE])


class TestRelationHelpers(unittest.TestCase):
    def test_is_uuid(self) -> None:
        self.assertTrue(is_uuid(ADA))
        self.assertTrue(is_uuid(uuid.UUID(ADA)))
        self.assertFalse(is_uuid("abc"))
        self.assertFalse(is_uuid(None))

    def test_user_label(self) -> None:
        user = {"name": "Ada", "email": "ada@example.com"}
        self.assertEqual(user_label(user), "Ada — ada@example.com")
        self.assertEqual(user_label(user, "email"), "ada@example.com")
        self.assertEqual(user_label({"email": "x@example.com"}, "name"), "x@example.com")
        self.assertEqual(user_label(None), "")

    def test_dynamic_choices(self) -> None:
        field = {"type": "dropdown", "config": {"sourceType": "colors", "sourceField": "hex"}}
        self.assertEqual(choice_source_slug(field), "colors")
        self.assertIsNone(choice_source_slug({"type": "text", "config": {"sourceType": "colors"}}))
        entries = [{"id": "1", "title": "Red", "data": {"hex": "#f00"}}, {"id": "2", "title": "Blue", "data": {}}]
        self.assertEqual(dynamic_choices(field, entries), [{"value": "#f00", "label": "#f00"}, {"value": "Blue", "label": "Blue"}])

    def test_inline_edit_allow_list(self) -> None:
        fields = [{"key": "name"}, {"key": "bio"}]
        self.assertEqual(inline_edit_fields(fields, {}), fields)
        self.assertEqual(inline_edit_fields(fields, {"inlineEdit": {"fields": []}}), fields)
        self.assertEqual(inline_edit_fields(fields, {"inlineEdit": {"fields": ["bio"]}}), [{"key": "bio"}])

    def test_relation_options(self) -> None:
        registry = FieldSchemaRegistry()
        store = MemoryEntryStore()
        authors = registry.create_content_type({"slug": "authors", "label_singular": "Author"})
        entry = store.create(authors["id"], {"title": "Ada", "slug": "ada", "data": {}})
        self.assertEqual(list_relation_options(registry, store, "authors"), [{"value": entry["id"], "label": "Ada"}])
        self.assertEqual(list_relation_options(registry, store, "missing"), [])


class TestFieldOptions(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = FieldSchemaRegistry()
        self.store = MemoryEntryStore()
        colors = self.registry.create_content_type({"slug": "colors", "label_singular": "Color"})
        self.store.create(colors["id"], {"title": "Red", "slug": "red", "data": {"hex": "#f00"}})
        authors = self.registry.create_content_type(
            {
                "slug": "authors",
                "label_singular": "Author",
                "fields": [{"key": "name", "label": "Name"}, {"key": "bio", "label": "Bio"}],
            }
        )
        self.ada = self.store.create(authors["id"], {"title": "Ada", "slug": "ada", "data": {}})

    def test_choice_field_reads_source_type(self) -> None:
        field = {"key": "tint", "type": "dropdown", "config": {"sourceType": "colors", "sourceField": "hex"}}
        self.assertEqual(field_options(self.registry, self.store, field), {"options": [{"value": "#f00", "label": "#f00"}]})

    def test_relation_field_lists_target_and_inline_fields(self) -> None:
        field = {"key": "author", "type": "relation", "config": {"relatedType": "authors", "inlineEdit": {"fields": ["bio"]}}}
        out = field_options(self.registry, self.store, field)
        self.assertEqual(out["options"], [{"value": self.ada["id"], "label": "Ada"}])
        self.assertEqual([f["key"] for f in out["inlineFields"]], ["bio"])

    def test_relation_to_unknown_type(self) -> None:
        field = {"key": "author", "type": "relation", "config": {"relatedType": "ghosts"}}
        self.assertEqual(field_options(self.registry, self.store, field), {"options": [], "inlineFields": []})

    def test_static_choices(self) -> None:
        field = {"key": "size", "type": "radio", "config": {"choices": [{"value": "s", "label": "Small"}]}}
        self.assertEqual(field_options(self.registry, self.store, field), {"options": [{"value": "s", "label": "Small"}]})


if __name__ == "__main__":
    unittest.main()
