from __future__ import annotations

import io
import unittest
from datetime import date, datetime, timezone

from openpyxl import Workbook as OpenpyxlWorkbook
from openpyxl import load_workbook

from sheet_validator.aggregator import analyze_workbook
from sheet_validator.exporter import export_filename, export_workbook, summary_sheet_title
from sheet_validator.loader import Workbook, load_workbook_bytes
from sheet_validator.overrides import OverrideSet
from sheet_validator.report import build_report

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def xlsx_bytes(sheets: dict[str, list[list]]) -> bytes:
    wb = OpenpyxlWorkbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def exported(data: bytes, filename: str, overrides: OverrideSet | None = None):
    workbook = load_workbook_bytes(data, filename)
    results = analyze_workbook(workbook, {}, NOW)
    report = build_report(workbook, results, overrides or OverrideSet(), file_name=filename, generated_at=NOW)
    book = load_workbook(io.BytesIO(export_workbook(workbook, report)))
    return book, report


def sheet_values(ws) -> list[list]:
    return [list(row) for row in ws.iter_rows(values_only=True)]


class ExportWorkbookTests(unittest.TestCase):
    def test_original_sheets_are_kept_and_summary_appended(self):
        data = xlsx_bytes(
            {
                "Orders": [["Id", "Amount"], [1, 10.5], [2, None]],
                "Notes": [["Text"]],
            }
        )
        book, report = exported(data, "orders.xlsx")

        self.assertEqual(book.sheetnames, ["Orders", "Notes", "Validation Summary"])
        self.assertEqual(sheet_values(book["Orders"]), [["Id", "Amount"], [1, 10.5], [2, None]])
        summary = sheet_values(book["Validation Summary"])
        self.assertEqual(summary[0][0], "Data Validation Summary Report")
        self.assertEqual(summary[-1][:2], ["Overall File Status (After Override):", report.status.value])
        self.assertEqual(report.status.value, "FAIL")

    def test_exported_status_matches_live_override_state(self):
        data = xlsx_bytes({"Orders": [["Id", "Amount"], [1, None]]})
        book, report = exported(data, "orders.xlsx", OverrideSet([("Orders", "Amount")]))
        summary = sheet_values(book["Validation Summary"])
        self.assertTrue(report.passed)
        self.assertEqual(summary[-1][:2], ["Overall File Status (After Override):", "PASS"])
        self.assertIn(["Amount", 1, 0, 0, 0, 1, "OVERRIDDEN"], [row[:7] for row in summary])

    def test_csv_source_becomes_sheet1(self):
        book, _ = exported(b"Name,Age\nAda,36\n", "people.csv")
        self.assertEqual(book.sheetnames, ["Sheet1", "Validation Summary"])
        self.assertEqual(sheet_values(book["Sheet1"]), [["Name", "Age"], ["Ada", 36]])

    def test_control_characters_are_dropped_from_rebuilt_sheets(self):
        workbook = Workbook.from_grids({"Sheet1": [["Name", "Note\x0b"], ["Bob", "a\x0bb"]]}, source_format="csv")
        results = analyze_workbook(workbook, {}, NOW)
        report = build_report(workbook, results, OverrideSet(), file_name="notes\x01.csv", generated_at=NOW)
        book = load_workbook(io.BytesIO(export_workbook(workbook, report)))

        self.assertEqual(sheet_values(book["Sheet1"]), [["Name", "Note"], ["Bob", "ab"]])
        summary = sheet_values(book["Validation Summary"])
        self.assertEqual(summary[1][0], "For File: notes.csv")
        self.assertIn("Note", [row[0] for row in summary])

    def test_formula_text_from_text_sources_stays_text(self):
        book, _ = exported(b"Name,Note\nAda,=1+1\n", "notes.csv")
        cell = book["Sheet1"]["B2"]
        self.assertEqual(cell.value, "=1+1")
        self.assertEqual(cell.data_type, "s")

    def test_existing_summary_sheet_is_not_overwritten(self):
        data = xlsx_bytes({"Data": [["A"], [1]], "Validation Summary": [["old"]]})
        book, _ = exported(data, "again.xlsx")
        self.assertEqual(book.sheetnames, ["Data", "Validation Summary", "Validation Summary (2)"])
        self.assertEqual(book["Validation Summary"]["A1"].value, "old")

    def test_summary_title_picks_first_free_name(self):
        existing = ["Validation Summary", "Validation Summary (2)"]
        self.assertEqual(summary_sheet_title(existing), "Validation Summary (3)")
        self.assertEqual(summary_sheet_title(["Data"]), "Validation Summary")


class ExportFilenameTests(unittest.TestCase):
    def test_extension_is_stripped_case_insensitively(self):
        day = date(2024, 3, 1)
        self.assertEqual(export_filename("orders.XLSX", day), "Validation_Report_orders_2024-03-01.xlsx")
        self.assertEqual(export_filename("people.csv", day), "Validation_Report_people_2024-03-01.xlsx")
        self.assertEqual(export_filename("archive.v2", day), "Validation_Report_archive.v2_2024-03-01.xlsx")

    def test_datetime_uses_utc_date(self):
        moment = datetime(2024, 3, 1, 23, 30, tzinfo=timezone.utc)
        self.assertEqual(export_filename("a.xlsx", moment), "Validation_Report_a_2024-03-01.xlsx")


if __name__ == "__main__":
    unittest.main()
