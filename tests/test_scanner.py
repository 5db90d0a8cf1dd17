from __future__ import annotations

import unittest
from datetime import datetime, timezone

from sheet_validator.loader import Sheet
from sheet_validator.scanner import find_duplicate_rows, is_future_date, row_signature, scan_cells

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)
# 2024-06-01 is serial 45444.
SERIAL_NOW = 45444


class StructuralScanTests(unittest.TestCase):
    def test_counters_start_at_zero_for_every_named_column(self):
        sheet = Sheet("Data", [["Name", "Age"], ["Alice", 30], [None, 25]])
        scan = scan_cells(sheet, NOW)
        self.assertEqual(scan.blank_cells, {"Name": 1, "Age": 0})
        self.assertEqual(scan.null_strings, {"Name": 0, "Age": 0})
        self.assertEqual(scan.future_dates, {"Name": 0, "Age": 0})

    def test_short_rows_count_missing_cells_as_blank(self):
        sheet = Sheet("Data", [["A", "B", "C"], ["x"]])
        self.assertEqual(scan_cells(sheet, NOW).blank_cells, {"A": 0, "B": 1, "C": 1})

    def test_null_placeholders_are_case_and_space_insensitive(self):
        sheet = Sheet("Data", [["Country"], ["NULL"], [" null "], ["Null Island"], [None]])
        scan = scan_cells(sheet, NOW)
        self.assertEqual(scan.null_strings, {"Country": 2})
        self.assertEqual(scan.blank_cells, {"Country": 1})

    def test_future_dates_from_serials_and_strings(self):
        sheet = Sheet(
            "Data",
            [
                ["When"],
                [SERIAL_NOW + 10],
                [SERIAL_NOW - 10],
                ["2099-01-01"],
                ["2001-01-01"],
                ["not a date"],
                [True],
            ],
        )
        self.assertEqual(scan_cells(sheet, NOW).future_dates, {"When": 2})

    def test_unconvertible_serial_is_never_future(self):
        self.assertFalse(is_future_date(1e15, NOW))
        self.assertTrue(is_future_date(SERIAL_NOW + 1, NOW))

    def test_blank_header_cells_are_not_columns(self):
        sheet = Sheet("Data", [["Name", None, "Age"], ["Ada", "x", None]])
        scan = scan_cells(sheet, NOW)
        self.assertEqual(set(scan.blank_cells), {"Name", "Age"})


class DuplicateRowTests(unittest.TestCase):
    def test_only_repeats_after_the_first_are_flagged(self):
        sheet = Sheet("Data", [["Name", "Age"], ["Alice", "30"], ["", "25"], ["Alice", "30"], ["Alice", "30"]])
        self.assertEqual(find_duplicate_rows(sheet), [4, 5])

    def test_comparison_is_type_sensitive(self):
        sheet = Sheet("Data", [["A"], [1], ["1"], [True], [1.0]])
        self.assertEqual(find_duplicate_rows(sheet), [5])

    def test_trailing_absent_cells_do_not_change_identity(self):
        self.assertEqual(row_signature(["a", None]), row_signature(["a"]))

    def test_no_duplicates(self):
        sheet = Sheet("Data", [["A", "B"], ["x", 1], ["x", 2]])
        self.assertEqual(find_duplicate_rows(sheet), [])


if __name__ == "__main__":
    unittest.main()
