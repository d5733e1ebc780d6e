import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
for path in (ROOT, SRC):
    if path not in sys.path:
        sys.path.insert(0, path)

from layout_compile import compile_layout, section_columns


FIELDS = [
    {"key": "first_name", "label": "First name", "type": "text"},
    {"key": "bio", "label": "Bio", "type": "textarea"},
    {"key": "links", "label": "Links", "type": "repeater"},
]


class TestCompileLayout(unittest.TestCase):
    def test_no_sections_synthesizes_fallback(self) -> None:
        sections = compile_layout(FIELDS, {})
        self.assertEqual(len(sections), 1)
        self.assertEqual(sections[0]["id"], "main")
        self.assertEqual(sections[0]["title"], "Fields")
        self.assertEqual([r["key"] for r in sections[0]["fields"]], ["first_name", "bio", "links"])

    def test_empty_sections_list_yields_nothing(self) -> None:
        self.assertEqual(compile_layout(FIELDS, {"sections": []}), [])

    def test_sections_without_usable_rows_yield_nothing(self) -> None:
        config = {"sections": [{"title": "Empty", "fields": []}, {"fields": [{"key": "bio", "visible": False}]}]}
        self.assertEqual(compile_layout(FIELDS, config), [])

    def test_widgets_alias(self) -> None:
        sections = compile_layout(FIELDS, {"widgets": [{"fields": ["bio"]}]})
        self.assertEqual(sections[0]["id"], "widget-1")
        self.assertEqual(sections[0]["title"], "Widget 1")

    def test_refs_resolve_fields_and_builtins(self) -> None:
        config = {
            "sections": [
                {
                    "id": "main",
                    "title": "Main",
                    "columns": 2,
                    "fields": ["title", {"fieldKey": "firstName", "width": 5}, {"key": "ghost"}, {"nothing": 1}],
                }
            ]
        }
        rows = compile_layout(FIELDS, config)[0]["fields"]
        self.assertEqual([r["key"] for r in rows], ["title", "firstName", "ghost"])
        self.assertEqual(rows[0]["field"], {"key": "title", "label": "Title", "type": "builtin"})
        self.assertEqual(rows[1]["field"]["key"], "first_name")
        self.assertEqual(rows[1]["width"], 2)
        self.assertEqual(rows[2]["field"], {"key": "ghost", "type": "builtin"})

    def test_column_count_from_layout_name(self) -> None:
        self.assertEqual(section_columns({"columns": 4}), 4)
        self.assertEqual(section_columns({"layout": "three-column"}), 3)
        self.assertEqual(section_columns({"layout": "two-column"}), 2)
        self.assertEqual(section_columns({"columns": "0"}), 1)

    def test_col_span_alias(self) -> None:
        config = {"sections": [{"layout": "three-column", "fields": [{"key": "bio", "colSpan": 2}]}]}
        section = compile_layout(FIELDS, config)[0]
        self.assertEqual(section["columns"], 3)
        self.assertEqual(section["fields"][0]["width"], 2)


if __name__ == "__main__":
    unittest.main()
