import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
for path in (ROOT, SRC):
    if path not in sys.path:
        sys.path.insert(0, path)

from app.entry_normalize import canonicalize_value, normalize_entry_data, rewrite_aliases


FIELDS = [
    {"key": "first_name", "type": "text"},
    {"key": "contact_email", "type": "email"},
    {"key": "website", "type": "url"},
    {"key": "phone", "type": "phone"},
    {
        "key": "sections",
        "type": "repeater",
        "config": {
            "maxDepth": 1,
            "subfields": [
                {"key": "heading", "type": "text"},
                {"key": "items", "type": "repeater", "config": {"subfields": [{"key": "text"}]}},
            ],
        },
    },
]


class TestEntryNormalize(unittest.TestCase):
    def test_alias_moves_to_canonical_key(self) -> None:
        out = rewrite_aliases(FIELDS, {"firstName": "Ada"})
        self.assertEqual(out, {"first_name": "Ada"})

    def test_canonical_key_wins_over_alias(self) -> None:
        out = rewrite_aliases(FIELDS, {"firstName": "Alias", "first_name": "Canonical"})
        self.assertEqual(out["first_name"], "Canonical")
        self.assertEqual(out["firstName"], "Alias")

    def test_values_are_canonicalized(self) -> None:
        data = {"contactEmail": " ADA@EXAMPLE.COM ", "website": "example.com", "phone": "(555) 123-4567"}
        out = normalize_entry_data(FIELDS, data)
        self.assertEqual(out["contact_email"], "ada@example.com")
        self.assertEqual(out["website"], "https://example.com")
        self.assertTrue(out["phone"].startswith("+"))

    def test_malformed_values_are_kept(self) -> None:
        out = normalize_entry_data(FIELDS, {"contact_email": "not-an-email", "website": "has space"})
        self.assertEqual(out["contact_email"], "not-an-email")
        self.assertEqual(out["website"], "has space")
        self.assertEqual(canonicalize_value("email", 42, "contact_email"), 42)

    def test_absent_keys_stay_absent(self) -> None:
        out = normalize_entry_data(FIELDS, {"first_name": "Ada"})
        self.assertEqual(out, {"first_name": "Ada"})

    def test_unknown_keys_survive(self) -> None:
        out = normalize_entry_data(FIELDS, {"legacy": {"a": 1}})
        self.assertEqual(out, {"legacy": {"a": 1}})

    def test_inert_nested_repeater_data_is_dropped(self) -> None:
        data = {"sections": [{"heading": "Intro", "items": [{"text": "x"}]}]}
        out = normalize_entry_data(FIELDS, data)
        self.assertEqual(out["sections"], [{"heading": "Intro"}])

    def test_input_not_mutated_and_idempotent(self) -> None:
        data = {"contactEmail": "ADA@EXAMPLE.COM", "sections": [{"heading": "h", "items": []}]}
        once = normalize_entry_data(FIELDS, data)
        self.assertIn("contactEmail", data)
        self.assertEqual(normalize_entry_data(FIELDS, once), once)

    def test_non_dict_data(self) -> None:
        self.assertEqual(normalize_entry_data(FIELDS, None), {})
        self.assertEqual(normalize_entry_data(FIELDS, ["a"]), {})


if __name__ == "__main__":
    unittest.main()
