"""
Summary report: per-column, per-sheet and workbook pass/fail after overrides.

build_report is the only place the verdict is computed. The text rendering, the JSON
payload and the exported summary sheet are all views over the Report it returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sheet_validator import __version__
from sheet_validator.aggregator import AnalysisResults
from sheet_validator.config import REPORT_TITLE
from sheet_validator.contracts import build_contract, build_run_summary, utc_now_iso
from sheet_validator.loader import Workbook
from sheet_validator.overrides import OverrideSet

SUMMARY_HEADER = [
    "Column Name",
    "Blank Cells",
    '"NULL" Strings',
    "Future Dates",
    "Custom Validation Issues",
    "Total Issues (Column)",
    "Status (After Override)",
]


class ColumnStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    OVERRIDDEN = "OVERRIDDEN"


@dataclass
class ColumnSummary:
    column: str
    blank_cells: int
    null_strings: int
    future_dates: int
    custom_issues: int
    overridden: bool = False

    @property
    def identified(self) -> int:
        return self.blank_cells + self.null_strings + self.future_dates + self.custom_issues

    @property
    def remaining(self) -> int:
        return 0 if self.overridden else self.identified

    @property
    def overridden_count(self) -> int:
        return self.identified if self.overridden else 0

    @property
    def status(self) -> ColumnStatus:
        if self.overridden:
            return ColumnStatus.OVERRIDDEN
        return ColumnStatus.FAIL if self.identified > 0 else ColumnStatus.PASS

    def to_row(self) -> list:
        return [
            self.column,
            self.blank_cells,
            self.null_strings,
            self.future_dates,
            self.custom_issues,
            self.identified,
            self.status.value,
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "column": self.column,
            "blank_cells": self.blank_cells,
            "null_strings": self.null_strings,
            "future_dates": self.future_dates,
            "custom_issues": self.custom_issues,
            "identified": self.identified,
            "remaining": self.remaining,
            "status": self.status.value,
        }


@dataclass
class SheetSummary:
    name: str
    columns: list[ColumnSummary] = field(default_factory=list)
    duplicate_rows: int = 0

    @property
    def identified(self) -> int:
        return sum(column.identified for column in self.columns)

    @property
    def overridden(self) -> int:
        return sum(column.overridden_count for column in self.columns)

    @property
    def remaining(self) -> int:
        return sum(column.remaining for column in self.columns)

    @property
    def status(self) -> ColumnStatus:
        return ColumnStatus.PASS if self.remaining == 0 else ColumnStatus.FAIL

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": [column.to_dict() for column in self.columns],
            "duplicate_rows": self.duplicate_rows,
            "identified": self.identified,
            "overridden": self.overridden,
            "remaining": self.remaining,
            "status": self.status.value,
        }


@dataclass
class Report:
    file_name: str
    generated_at: datetime
    sheets: list[SheetSummary] = field(default_factory=list)

    @property
    def identified(self) -> int:
        return sum(sheet.identified for sheet in self.sheets)

    @property
    def overridden(self) -> int:
        return sum(sheet.overridden for sheet in self.sheets)

    @property
    def remaining(self) -> int:
        return sum(sheet.remaining for sheet in self.sheets)

    @property
    def status(self) -> ColumnStatus:
        return ColumnStatus.PASS if self.remaining == 0 else ColumnStatus.FAIL

    @property
    def passed(self) -> bool:
        return self.status is ColumnStatus.PASS

    def sheet(self, name: str) -> Optional[SheetSummary]:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file_name,
            "generated_at": utc_now_iso(self.generated_at),
            "sheets": [sheet.to_dict() for sheet in self.sheets],
            "totals": {
                "identified": self.identified,
                "overridden": self.overridden,
                "remaining": self.remaining,
            },
            "status": self.status.value,
        }


def _live_columns(workbook: Workbook, sheet_name: str) -> list[str]:
    sheet = workbook.sheet(sheet_name)
    if sheet is None:
        return []
    columns: list[str] = []
    for name in sheet.column_names():
        if name not in columns:
            columns.append(name)
    return columns


def build_report(
    workbook: Workbook,
    results: AnalysisResults,
    overrides: Optional[OverrideSet] = None,
    file_name: str = "N/A",
    generated_at: Optional[datetime] = None,
) -> Report:
    """
    Recompute the summary from the current results and override state.

    Column lists are read from ``workbook`` at call time, never from scan-time headers.
    """
    overrides = overrides or OverrideSet()
    report = Report(file_name=file_name, generated_at=generated_at or datetime.now(timezone.utc))
    for sheet_name, issues in results.sheets.items():
        summary = SheetSummary(name=sheet_name, duplicate_rows=len(issues.duplicate_rows))
        for column in _live_columns(workbook, sheet_name):
            summary.columns.append(ColumnSummary(
                column=column,
                blank_cells=issues.blank_cells.get(column, 0),
                null_strings=issues.null_strings.get(column, 0),
                future_dates=issues.future_dates.get(column, 0),
                custom_issues=issues.custom_count(column),
                overridden=overrides.is_overridden(sheet_name, column),
            ))
        report.sheets.append(summary)
    return report


def format_generated_on(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def report_rows(report: Report) -> list[list]:
    """The summary as a flat table; the exported summary sheet is written from these rows."""
    rows: list[list] = [
        [REPORT_TITLE],
        [f"For File: {report.file_name}"],
        [f"Generated On: {format_generated_on(report.generated_at)}"],
        [],
    ]
    for sheet in report.sheets:
        rows.append([])
        rows.append([f"Sheet: {sheet.name}"])
        rows.append(list(SUMMARY_HEADER))
        rows.extend(column.to_row() for column in sheet.columns)
        rows.append([])
        rows.append([f"Total Issues Identified for Sheet ({sheet.name}):", sheet.identified])
        rows.append([f"Total Issues Overridden for Sheet ({sheet.name}):", sheet.overridden])
        rows.append([f"Total Issues Remaining for Sheet ({sheet.name}):", sheet.remaining])
        rows.append(["Sheet Overall Status (After Override):", sheet.status.value])

    rows.append([])
    rows.append(["Overall File Summary"])
    rows.append(["Grand Total Issues Identified:", report.identified])
    rows.append(["Grand Total Issues Overridden:", report.overridden])
    rows.append(["Grand Total Issues Remaining (After Override):", report.remaining])
    rows.append(["Overall File Status (After Override):", report.status.value])
    return rows


def render_report_text(report: Report) -> str:
    lines = [
        REPORT_TITLE,
        f"For File: {report.file_name}",
        f"Generated On: {format_generated_on(report.generated_at)}",
    ]
    for sheet in report.sheets:
        lines.append("")
        lines.append(f"Sheet: {sheet.name}")
        table = [SUMMARY_HEADER] + [[str(cell) for cell in column.to_row()] for column in sheet.columns]
        widths = [max(len(row[idx]) for row in table) for idx in range(len(SUMMARY_HEADER))]
        for row in table:
            lines.append("  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row)).rstrip())
        if sheet.duplicate_rows:
            lines.append(f"Duplicate rows: {sheet.duplicate_rows}")
        lines.append(f"Total Issues Identified for Sheet ({sheet.name}): {sheet.identified}")
        lines.append(f"Total Issues Overridden for Sheet ({sheet.name}): {sheet.overridden}")
        lines.append(f"Total Issues Remaining for Sheet ({sheet.name}): {sheet.remaining}")
        lines.append(f"Sheet Overall Status (After Override): {sheet.status.value}")

    lines.extend(
        [
            "",
            "Overall File Summary",
            f"Grand Total Issues Identified: {report.identified}",
            f"Grand Total Issues Overridden: {report.overridden}",
            f"Grand Total Issues Remaining (After Override): {report.remaining}",
            f"Overall File Status (After Override): {report.status.value}",
        ]
    )
    return "\n".join(lines) + "\n"


def build_report_payload(
    report: Report,
    *,
    overrides: Optional[OverrideSet] = None,
    warnings: Optional[list[str]] = None,
) -> dict[str, Any]:
    contract = build_contract("sheet_validator.report")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": __version__,
        **report.to_dict(),
        "overrides": [list(pair) for pair in (overrides or OverrideSet()).pairs()],
        "text_report": render_report_text(report),
        "run_summary": build_run_summary(
            command="report",
            input_name=report.file_name,
            status="ok" if report.passed else "fail",
            metrics={
                "identified": report.identified,
                "overridden": report.overridden,
                "remaining": report.remaining,
                "verdict": report.status.value,
            },
            warnings=warnings,
        ),
    }
