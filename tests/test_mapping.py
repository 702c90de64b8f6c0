from __future__ import annotations

import unittest
from datetime import datetime

import _support  # noqa: F401

from order_sheet.mapping import RowError, apply_template, coerce_float, coerce_int, expand_pattern, flatten_value
from order_sheet.template import ComputedTemplate, DirectReference, FixedValue, Template

NOW = datetime(2024, 5, 6, 7, 8, 9)


class Unprintable:
    def __str__(self):
        raise ValueError("unprintable")


class ApplyTemplateTests(unittest.TestCase):
    def test_direct_reference_and_fixed_field(self):
        template = Template(
            name="t",
            ordered_target_fields=("A", "B"),
            rules={"A": DirectReference("x")},
            fixed_fields={"B": "K"},
        )
        outcome = apply_template(template, [{"x": "5"}], now=NOW)
        self.assertEqual(outcome.records, [{"A": "5", "B": "K"}])
        self.assertEqual(outcome.errors, [])

    def test_no_implicit_same_name_match(self):
        template = Template(name="t", ordered_target_fields=("상품명",))
        outcome = apply_template(template, [{"상품명": "사과"}], now=NOW)
        self.assertEqual(outcome.records, [{"상품명": ""}])

    def test_priority_manual_then_fixed_then_rule(self):
        template = Template(
            name="t",
            ordered_target_fields=("A", "B", "C"),
            rules={"A": DirectReference("x"), "B": DirectReference("x"), "C": DirectReference("x")},
            fixed_fields={"A": "fixed", "B": "fixed"},
        )
        outcome = apply_template(template, [{"x": "rule"}], manual_fields={"A": "manual", "C": ""}, now=NOW)
        self.assertEqual(outcome.records, [{"A": "manual", "B": "fixed", "C": "rule"}])

    def test_missing_source_field_is_empty(self):
        template = Template(name="t", ordered_target_fields=("A",), rules={"A": DirectReference("없음")})
        self.assertEqual(apply_template(template, [{"x": 1}], now=NOW).records, [{"A": ""}])

    def test_output_follows_ordered_fields(self):
        template = Template(
            name="t",
            ordered_target_fields=("Z", "A"),
            rules={"A": FixedValue("1"), "Z": FixedValue("2"), "unlisted": FixedValue("3")},
        )
        record = apply_template(template, [{}], now=NOW).records[0]
        self.assertEqual(list(record), ["Z", "A"])

    def test_computed_template_placeholders(self):
        template = Template(
            name="과일상회",
            ordered_target_fields=("메모", "접수시각"),
            rules={
                "메모": ComputedTemplate("{template_name}/{오늘}/{상품명}/{unknown}"),
                "접수시각": ComputedTemplate("{now}"),
            },
        )
        record = apply_template(template, [{"상품명": "사과"}], now=NOW).records[0]
        self.assertEqual(record["메모"], "과일상회/2024-05-06/사과/")
        self.assertEqual(record["접수시각"], "2024-05-06 07:08:09")

    def test_numeric_and_date_coercion(self):
        template = Template(
            name="t",
            ordered_target_fields=("수량", "단가", "주문일", "개수"),
            rules={
                "수량": DirectReference("q"),
                "단가": DirectReference("p"),
                "주문일": DirectReference("d"),
                "개수": DirectReference("bad"),
            },
        )
        record = apply_template(template, [{"q": "1,234개", "p": "12.5", "d": 45292, "bad": "abc"}], now=NOW).records[0]
        self.assertEqual(record, {"수량": 1234, "단가": 12.5, "주문일": "2024-01-01", "개수": ""})

    def test_failing_row_is_reported_and_skipped(self):
        template = Template(name="t", ordered_target_fields=("A",), rules={"A": DirectReference("x")})
        records = [{"x": "1"}, {"x": Unprintable()}, {"x": "3"}]
        outcome = apply_template(template, records, now=NOW)
        self.assertEqual(outcome.records, [{"A": "1"}, {"A": "3"}])
        self.assertEqual(outcome.errors, [RowError(2, "ValueError: unprintable")])
        self.assertEqual(outcome.errors[0].to_dict(), {"rowIndex": 2, "message": "ValueError: unprintable"})


class ValueHelperTests(unittest.TestCase):
    def test_flatten_value(self):
        self.assertEqual(flatten_value(None), "")
        self.assertEqual(flatten_value(["a", "b"]), "a, b")
        self.assertEqual(flatten_value({"k": 1}), '{"k": 1}')
        self.assertEqual(flatten_value({"richText": [{"text": "a"}, {"text": "b"}]}), "ab")
        self.assertEqual(flatten_value(datetime(2024, 1, 2)), "2024-01-02")

    def test_coerce_int(self):
        self.assertEqual(coerce_int("3"), 3)
        self.assertEqual(coerce_int(" -2 "), -2)
        self.assertEqual(coerce_int(3.9), 3)
        self.assertEqual(coerce_int("3.9"), 3)
        self.assertEqual(coerce_int("abc"), "")
        self.assertEqual(coerce_int(True), "")

    def test_coerce_float(self):
        self.assertEqual(coerce_float("2,000.5원"), 2000.5)
        self.assertEqual(coerce_float(7), 7.0)
        self.assertEqual(coerce_float("x"), "")

    def test_expand_pattern_uses_record_values(self):
        template = Template(name="T", ordered_target_fields=("A",))
        self.assertEqual(expand_pattern("{수량}개 {timestamp}", template, {"수량": 3}, NOW), "3개 2024-05-06 07:08:09")


if __name__ == "__main__":
    unittest.main()
