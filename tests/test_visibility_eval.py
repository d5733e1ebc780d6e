import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
for path in (ROOT, SRC):
    if path not in sys.path:
        sys.path.insert(0, path)

from visibility_eval import as_number, compute_visibility, eval_rule, is_empty_value, string_form


SUBFIELDS = [{"key": "age"}, {"key": "guardian"}, {"key": "notes"}]


class TestValueHelpers(unittest.TestCase):
    def test_empty_values(self) -> None:
        for value in (None, "", "   ", [], {}):
            self.assertTrue(is_empty_value(value), value)
        for value in (0, False, "0", [0], {"a": None}):
            self.assertFalse(is_empty_value(value), value)

    def test_string_form(self) -> None:
        self.assertEqual(string_form(None), "")
        self.assertEqual(string_form(True), "true")
        self.assertEqual(string_form(3.0), "3")
        self.assertEqual(string_form(["a", 1]), "a,1")
        self.assertEqual(string_form({"b": 1, "a": 2}), '{"a":2,"b":1}')

    def test_blank_is_not_a_number(self) -> None:
        self.assertIsNone(as_number(""))
        self.assertIsNone(as_number(None))
        self.assertIsNone(as_number(True))
        self.assertIsNone(as_number("abc"))
        self.assertIsNone(as_number("nan"))
        self.assertEqual(as_number(" 20 "), 20.0)


class TestEvalRule(unittest.TestCase):
    def test_numeric_comparison_on_string_value(self) -> None:
        rule = {"ifKey": "age", "op": "gte", "value": 18, "targets": ["guardian"]}
        self.assertTrue(eval_rule(rule, {"age": "20"}))
        self.assertFalse(eval_rule(rule, {"age": "9"}))

    def test_non_numeric_falls_back_to_string_order(self) -> None:
        rule = {"ifKey": "code", "op": "lt", "value": "b"}
        self.assertTrue(eval_rule(rule, {"code": "a"}))
        self.assertFalse(eval_rule(rule, {"code": "c"}))

    def test_blank_against_number_compares_as_strings(self) -> None:
        rule = {"ifKey": "age", "op": "gt", "value": 0}
        self.assertFalse(eval_rule(rule, {"age": ""}))

    def test_truthy_and_falsy(self) -> None:
        self.assertTrue(eval_rule({"ifKey": "x", "op": "truthy"}, {"x": "yes"}))
        self.assertFalse(eval_rule({"ifKey": "x", "op": "truthy"}, {"x": "  "}))
        self.assertTrue(eval_rule({"ifKey": "x", "op": "falsy"}, {}))

    def test_contains_is_case_insensitive(self) -> None:
        rule = {"ifKey": "title", "op": "contains", "value": "DRAFT"}
        self.assertTrue(eval_rule(rule, {"title": "my draft post"}))
        rule = {"ifKey": "title", "op": "not_contains", "value": "draft"}
        self.assertFalse(eval_rule(rule, {"title": "Draft"}))

    def test_equals_uses_string_forms(self) -> None:
        self.assertTrue(eval_rule({"ifKey": "n", "op": "equals", "value": "5"}, {"n": 5}))
        self.assertTrue(eval_rule({"ifKey": "b", "op": "equals", "value": "true"}, {"b": True}))
        self.assertTrue(eval_rule({"ifKey": "n", "op": "not_equals", "value": 4}, {"n": 5}))

    def test_unknown_operator_acts_as_equals(self) -> None:
        self.assertTrue(eval_rule({"ifKey": "n", "op": "approx", "value": "a"}, {"n": "a"}))
        self.assertFalse(eval_rule({"ifKey": "n", "op": "approx", "value": "a"}, {"n": "b"}))

    def test_malformed_rule_never_matches(self) -> None:
        self.assertFalse(eval_rule(None, {"a": 1}))
        self.assertFalse(eval_rule("x", {"a": 1}))

    def test_missing_row_reads_as_empty(self) -> None:
        self.assertTrue(eval_rule({"ifKey": "x", "op": "falsy"}, None))


class TestComputeVisibility(unittest.TestCase):
    def test_all_visible_without_rules(self) -> None:
        self.assertEqual(compute_visibility(SUBFIELDS, [], {}), {"age": True, "guardian": True, "notes": True})

    def test_hide_rule_applies_when_matched(self) -> None:
        rules = [{"ifKey": "age", "op": "gte", "value": 18, "action": "hide", "targets": ["guardian"]}]
        self.assertFalse(compute_visibility(SUBFIELDS, rules, {"age": "20"})["guardian"])
        self.assertTrue(compute_visibility(SUBFIELDS, rules, {"age": "12"})["guardian"])

    def test_last_matching_rule_wins(self) -> None:
        rules = [
            {"ifKey": "age", "op": "truthy", "action": "hide", "targets": ["notes"]},
            {"ifKey": "age", "op": "gt", "value": 10, "action": "show", "targets": ["notes"]},
        ]
        self.assertTrue(compute_visibility(SUBFIELDS, rules, {"age": 30})["notes"])
        self.assertFalse(compute_visibility(SUBFIELDS, rules, {"age": 5})["notes"])

    def test_unknown_targets_are_ignored(self) -> None:
        rules = [{"ifKey": "age", "op": "truthy", "action": "hide", "targets": ["ghost"]}]
        visible = compute_visibility(SUBFIELDS, rules, {"age": 1})
        self.assertNotIn("ghost", visible)
        self.assertEqual(set(visible), {"age", "guardian", "notes"})

    def test_string_subfields_are_accepted(self) -> None:
        self.assertEqual(compute_visibility(["a", " ", "b"], None, None), {"a": True, "b": True})


if __name__ == "__main__":
    unittest.main()
