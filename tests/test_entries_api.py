import os
import sys
import unittest
import uuid

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"
os.environ["STRATA_DISABLE_AUTH"] = "1"

import app.main as main


def _slug(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


class TestEntriesApi(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(main.app)

    def _create_type(self, slug: str, fields: list | None = None) -> dict:
        res = self.client.post(
            "/api/content-types",
            json={"slug": slug, "label_singular": "Person", "label_plural": "People", "fields": fields or []},
        )
        body = res.json()
        self.assertEqual(res.status_code, 201, body)
        return body["content_type"]

    def _create_entry(self, slug: str, payload: dict):
        return self.client.post(f"/api/content/{slug}", json=payload)

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})

    def test_create_and_read_entry(self) -> None:
        slug = _slug("people")
        self._create_type(slug, [{"key": "email", "label": "Email", "type": "email"}])
        res = self._create_entry(slug, {"title": "Ada Lovelace", "data": {"email": " ADA@Example.com "}})
        body = res.json()
        self.assertEqual(res.status_code, 201, body)
        entry = body["entry"]
        self.assertEqual(entry["slug"], "ada-lovelace")
        self.assertEqual(entry["status"], "draft")
        self.assertEqual(entry["data"]["email"], "ada@example.com")
        self.assertIn("_resolved", entry)

        by_slug = self.client.get(f"/api/content/{slug}/ada-lovelace").json()
        by_id = self.client.get(f"/api/content/{slug}/{entry['id']}").json()
        self.assertEqual(by_slug["entry"]["id"], entry["id"])
        self.assertEqual(by_id["entry"]["slug"], "ada-lovelace")

    def test_slug_conflict_is_scoped_to_type(self) -> None:
        first = _slug("people")
        second = _slug("people")
        self._create_type(first)
        self._create_type(second)
        self.assertEqual(self._create_entry(first, {"title": "Ada", "slug": "ada"}).status_code, 201)
        res = self._create_entry(first, {"title": "Another Ada", "slug": "ada"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["errors"][0]["code"], "CONFLICT")
        self.assertEqual(self._create_entry(second, {"title": "Ada", "slug": "ada"}).status_code, 201)

    def test_missing_title_is_rejected(self) -> None:
        slug = _slug("people")
        self._create_type(slug)
        res = self._create_entry(slug, {"title": "  ", "data": {}})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["path"], "title")

    def test_invalid_json_body(self) -> None:
        slug = _slug("people")
        self._create_type(slug)
        res = self.client.post(f"/api/content/{slug}", content=b"{not json", headers={"Content-Type": "application/json"})
        self.assertEqual(res.status_code, 400)

    def test_unknown_type_and_entry(self) -> None:
        res = self.client.get("/api/content/no_such_type")
        self.assertEqual(res.status_code, 404)
        self.assertFalse(res.json()["ok"])
        slug = _slug("people")
        self._create_type(slug)
        self.assertEqual(self.client.get(f"/api/content/{slug}/ghost").status_code, 404)

    def test_update_records_versions(self) -> None:
        slug = _slug("people")
        self._create_type(slug)
        entry = self._create_entry(slug, {"title": "Draft title"}).json()["entry"]
        res = self.client.put(
            f"/api/content/{slug}/{entry['id']}",
            json={"title": "Final title", "slug": entry["slug"], "status": "published"},
        )
        self.assertEqual(res.status_code, 200, res.json())
        self.assertEqual(res.json()["entry"]["status"], "published")
        versions = self.client.get(f"/api/content/{slug}/{entry['id']}/versions").json()["versions"]
        self.assertEqual(len(versions), 1)
        self.assertEqual(versions[0]["title"], "Draft title")

    def test_unknown_status_rejected(self) -> None:
        slug = _slug("people")
        self._create_type(slug)
        res = self._create_entry(slug, {"title": "x", "status": "deleted"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["path"], "status")

    def test_delete_entry(self) -> None:
        slug = _slug("people")
        self._create_type(slug)
        self._create_entry(slug, {"title": "Temp"})
        self.assertEqual(self.client.delete(f"/api/content/{slug}/temp").status_code, 200)
        self.assertEqual(self.client.get(f"/api/content/{slug}/temp").status_code, 404)

    def test_delete_type_cascades(self) -> None:
        slug = _slug("people")
        content_type = self._create_type(slug)
        self._create_entry(slug, {"title": "Ada"})
        res = self.client.delete(f"/api/content-types/{content_type['id']}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(main.entry_store.count(content_type["id"]), 0)
        self.assertEqual(self.client.get(f"/api/content/{slug}").status_code, 404)

    def test_type_slug_locked_once_entries_exist(self) -> None:
        slug = _slug("people")
        content_type = self._create_type(slug)
        self._create_entry(slug, {"title": "Ada"})
        res = self.client.put(f"/api/content-types/{content_type['id']}", json={"slug": _slug("renamed")})
        self.assertEqual(res.status_code, 409)

    def test_template_title_from_effective_view(self) -> None:
        slug = _slug("people")
        content_type = self._create_type(slug, [{"key": "name", "label": "Name", "type": "name"}])
        res = self.client.post(
            f"/api/content-types/{content_type['id']}/editor-views",
            json={
                "label": "Person editor",
                "default_roles": ["ADMIN"],
                "config": {"core": {"titleMode": "template", "titleTemplate": "{name.first} {name.last}"}},
            },
        )
        self.assertEqual(res.status_code, 201, res.json())
        entry = self._create_entry(
            slug, {"title": "placeholder", "data": {"name": {"first": "Ada", "last": "Lovelace"}}}
        ).json()["entry"]
        self.assertEqual(entry["title"], "Ada Lovelace")
        self.assertEqual(entry["slug"], "ada-lovelace")

    def test_effective_view_warns_on_empty_sections(self) -> None:
        slug = _slug("people")
        content_type = self._create_type(slug, [{"key": "bio", "label": "Bio", "type": "textarea"}])
        base = f"/api/content-types/{content_type['id']}/editor-views"
        fallback = self.client.get(f"{base}/effective").json()
        self.assertIsNone(fallback["view"])
        self.assertEqual(fallback["sections"][0]["id"], "main")
        self.assertEqual(fallback["warnings"], [])

        self.client.post(base, json={"label": "Broken", "sections": [{"fields": [{"key": "bio", "visible": False}]}]})
        body = self.client.get(f"{base}/effective").json()
        self.assertEqual(body["sections"], [])
        self.assertEqual(body["warnings"][0]["code"], "VIEW_SECTIONS_EMPTY")
        self.assertEqual(body["role"], "ADMIN")

    def test_editor_view_crud(self) -> None:
        slug = _slug("people")
        content_type = self._create_type(slug)
        base = f"/api/content-types/{content_type['id']}/editor-views"
        view = self.client.post(base, json={"label": "Main"}).json()["view"]
        self.assertEqual(self.client.post(base, json={"label": "Main"}).status_code, 409)
        updated = self.client.put(f"{base}/{view['id']}", json={"label": "Main view", "is_default": True}).json()["view"]
        self.assertEqual(updated["label"], "Main view")
        self.assertTrue(updated["is_default"])
        self.assertEqual(len(self.client.get(base).json()["views"]), 1)
        self.assertEqual(self.client.delete(f"{base}/{view['id']}").status_code, 200)
        self.assertEqual(self.client.delete(f"{base}/{view['id']}").status_code, 404)

    def test_list_with_display_and_options(self) -> None:
        slug = _slug("people")
        self._create_type(slug, [{"key": "active", "label": "Active", "type": "boolean"}])
        self._create_entry(slug, {"title": "Ada", "data": {"active": True}})
        entries = self.client.get(f"/api/content/{slug}", params={"display": "1"}).json()["entries"]
        self.assertEqual(entries[0]["_display"], {"active": "Yes"})
        plain = self.client.get(f"/api/content/{slug}").json()["entries"]
        self.assertNotIn("_display", plain[0])
        options = self.client.get(f"/api/content/{slug}/options").json()["options"]
        self.assertEqual(options, [{"value": entries[0]["id"], "label": "Ada"}])

    def test_field_options(self) -> None:
        target = _slug("authors")
        self._create_type(target, [{"key": "bio", "label": "Bio"}, {"key": "email", "label": "Email", "type": "email"}])
        ada = self._create_entry(target, {"title": "Ada"}).json()["entry"]
        slug = _slug("posts")
        self._create_type(
            slug,
            [
                {
                    "key": "author",
                    "label": "Author",
                    "type": "relation",
                    "config": {"relatedType": target, "inlineEdit": {"fields": ["bio"]}},
                },
                {"key": "pen_name", "label": "Pen name", "type": "dropdown", "config": {"sourceType": target}},
            ],
        )
        body = self.client.get(f"/api/content/{slug}/options", params={"field": "author"}).json()
        self.assertEqual(body["options"], [{"value": ada["id"], "label": "Ada"}])
        self.assertEqual([f["key"] for f in body["inlineFields"]], ["bio"])
        body = self.client.get(f"/api/content/{slug}/options", params={"field": "penName"}).json()
        self.assertEqual(body["options"], [{"value": "Ada", "label": "Ada"}])
        res = self.client.get(f"/api/content/{slug}/options", params={"field": "missing"})
        self.assertEqual(res.status_code, 404)

    def test_display_uses_user_labels(self) -> None:
        slug = _slug("people")
        self._create_type(slug, [{"key": "owner", "label": "Owner", "type": "relation_user", "config": {"display": "name"}}])
        user = main.user_store.upsert({"id": str(uuid.uuid4()), "name": "Grace", "email": "grace@example.com"})
        self._create_entry(slug, {"title": "Owned", "data": {"owner": user["id"]}})
        entries = self.client.get(f"/api/content/{slug}", params={"display": "1"}).json()["entries"]
        self.assertEqual(entries[0]["_display"], {"owner": "Grace"})

    def test_user_relations_resolved(self) -> None:
        slug = _slug("people")
        self._create_type(slug, [{"key": "owner", "label": "Owner", "type": "relation_user"}])
        user = main.user_store.upsert({"id": str(uuid.uuid4()), "name": "Grace", "email": "grace@example.com"})
        entry = self._create_entry(slug, {"title": "Owned", "data": {"owner": user["id"]}}).json()["entry"]
        resolved = entry["_resolved"]
        self.assertEqual(resolved["usersById"][user["id"]]["name"], "Grace")
        self.assertIn("owner", resolved["userFields"])

    def test_repeater_evaluate(self) -> None:
        res = self.client.post(
            "/api/repeater/evaluate",
            json={
                "config": {"maxRows": 1, "subfields": [{"key": "label"}], "rowLabelTemplate": "Link {#}"},
                "rows": [],
                "op": {"op": "append", "row": {"label": "Docs"}},
            },
        )
        body = res.json()
        self.assertEqual(res.status_code, 200, body)
        self.assertEqual(body["rows"], [{"label": "Docs"}])
        self.assertFalse(body["repeater"]["canAdd"])
        self.assertEqual(body["repeater"]["rows"][0]["label"], "Link 1")

    def test_repeater_evaluate_requires_config(self) -> None:
        res = self.client.post("/api/repeater/evaluate", json={"rows": []})
        self.assertEqual(res.status_code, 400)


if __name__ == "__main__":
    unittest.main()
