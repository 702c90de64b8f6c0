from __future__ import annotations

import unittest
from datetime import datetime

import _support  # noqa: F401

from order_sheet.cells import EMPTY, DateTime, Number, Text
from order_sheet.header_locator import HeaderSelection
from order_sheet.normalizer import format_datetime_value, normalize, serial_to_datetime

HEADER = HeaderSelection(row_index=0, fields=("상품명", "수량", "주문일"), columns=(0, 1, 2))


class NormalizeTests(unittest.TestCase):
    def test_trims_text_and_converts_serial_dates(self):
        grid = [
            [Text("상품명"), Text("수량"), Text("주문일")],
            [Text("  사과 "), Number(3.0), Number(45292.0)],
        ]
        self.assertEqual(normalize(grid, HEADER), [{"상품명": "사과", "수량": 3, "주문일": "2024-01-01"}])

    def test_fractional_serial_keeps_time(self):
        grid = [[], [Text("배"), Number(1.0), Number(45292.5)]]
        self.assertEqual(normalize(grid, HEADER)[0]["주문일"], "2024-01-01 12:00:00")

    def test_datetime_cells(self):
        grid = [
            [],
            [Text("a"), EMPTY, DateTime(datetime(2024, 1, 2))],
            [Text("b"), EMPTY, DateTime(datetime(2024, 1, 2, 9, 30))],
        ]
        records = normalize(grid, HEADER)
        self.assertEqual(records[0]["주문일"], "2024-01-02")
        self.assertEqual(records[1]["주문일"], "2024-01-02 09:30:00")

    def test_date_text_is_kept(self):
        grid = [[], [Text("a"), EMPTY, Text("2024/01/05")]]
        self.assertEqual(normalize(grid, HEADER)[0]["주문일"], "2024/01/05")

    def test_missing_cells_are_empty_strings(self):
        grid = [[], [Text("사과")]]
        self.assertEqual(normalize(grid, HEADER), [{"상품명": "사과", "수량": "", "주문일": ""}])

    def test_empty_and_whitespace_rows_are_dropped(self):
        grid = [[], [EMPTY, EMPTY, EMPTY], [Text("  "), Text(""), EMPTY], [Text("사과"), Number(1.0)]]
        records = normalize(grid, HEADER)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["상품명"], "사과")

    def test_cells_outside_header_columns_are_ignored(self):
        header = HeaderSelection(row_index=0, fields=("상품", "수량"), columns=(1, 3))
        grid = [[], [Text("x"), Text("사과"), Text("y"), Number(2.0)]]
        self.assertEqual(normalize(grid, header), [{"상품": "사과", "수량": 2}])

    def test_duplicate_labels_last_wins(self):
        header = HeaderSelection(row_index=0, fields=("비고", "비고"), columns=(0, 1))
        grid = [[], [Text("first"), Text("second")]]
        self.assertEqual(normalize(grid, header), [{"비고": "second"}])


class DateFormattingTests(unittest.TestCase):
    def test_serial_epoch(self):
        self.assertEqual(serial_to_datetime(25569), datetime(1970, 1, 1))

    def test_format_datetime_value(self):
        self.assertEqual(format_datetime_value(45292), "2024-01-01")
        self.assertEqual(format_datetime_value(datetime(2024, 1, 1, 0, 0, 1)), "2024-01-01 00:00:01")
        self.assertEqual(format_datetime_value("오늘"), "오늘")
        self.assertEqual(format_datetime_value(""), "")
        self.assertIs(format_datetime_value(True), True)


if __name__ == "__main__":
    unittest.main()
