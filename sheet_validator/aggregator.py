"""
Workbook analysis: runs the structural scan and the rule evaluator over every sheet
and folds their output into one SheetIssues record per sheet plus workbook totals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sheet_validator import __version__
from sheet_validator.contracts import build_contract, build_run_summary, utc_now_iso
from sheet_validator.evaluator import Issue, evaluate_sheet
from sheet_validator.loader import Workbook
from sheet_validator.rules import RuleSet
from sheet_validator.scanner import find_duplicate_rows, scan_cells

logger = logging.getLogger(__name__)


@dataclass
class SheetIssues:
    blank_cells: dict[str, int] = field(default_factory=dict)
    null_strings: dict[str, int] = field(default_factory=dict)
    future_dates: dict[str, int] = field(default_factory=dict)
    duplicate_rows: list[int] = field(default_factory=list)
    custom_validation: dict[str, list[Issue]] = field(default_factory=dict)

    def custom_count(self, column: str) -> int:
        return len(self.custom_validation.get(column, []))

    def column_total(self, column: str) -> int:
        """Issues identified for one column; duplicate rows are row-level and not included."""
        return (
            self.blank_cells.get(column, 0)
            + self.null_strings.get(column, 0)
            + self.future_dates.get(column, 0)
            + self.custom_count(column)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "blank_cells": dict(self.blank_cells),
            "null_strings": dict(self.null_strings),
            "future_dates": dict(self.future_dates),
            "duplicate_rows": list(self.duplicate_rows),
            "custom_validation": {
                column: [issue.to_dict() for issue in issues]
                for column, issues in self.custom_validation.items()
            },
        }


@dataclass
class AnalysisResults:
    sheets: dict[str, SheetIssues] = field(default_factory=dict)
    total_blank_cells: int = 0
    total_null_strings: int = 0
    total_future_dates: int = 0
    total_duplicate_rows: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def total_custom_issues(self) -> int:
        return sum(
            len(issues)
            for sheet in self.sheets.values()
            for issues in sheet.custom_validation.values()
        )

    def totals(self) -> dict[str, int]:
        return {
            "blank_cells": self.total_blank_cells,
            "null_strings": self.total_null_strings,
            "future_dates": self.total_future_dates,
            "duplicate_rows": self.total_duplicate_rows,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheets": {name: issues.to_dict() for name, issues in self.sheets.items()},
            "totals": self.totals(),
            "warnings": list(self.warnings),
        }


def analyze_sheet(sheet, rules: RuleSet, now: datetime, warnings: list[str]) -> SheetIssues:
    scan = scan_cells(sheet, now)
    return SheetIssues(
        blank_cells=scan.blank_cells,
        null_strings=scan.null_strings,
        future_dates=scan.future_dates,
        duplicate_rows=find_duplicate_rows(sheet),
        custom_validation=evaluate_sheet(sheet, rules, now, warnings),
    )


def analyze_workbook(
    workbook: Workbook,
    rules: Optional[RuleSet] = None,
    now: Optional[datetime] = None,
) -> AnalysisResults:
    """
    Analyse every sheet that has data rows. Always returns a fresh AnalysisResults.

    Sheets with no data rows get no entry and add nothing to the totals.
    """
    rules = rules or {}
    now = now or datetime.now(timezone.utc)
    results = AnalysisResults()
    seen_columns: set[str] = set()

    for sheet in workbook.sheets:
        if not sheet.has_data:
            logger.info("Skipping sheet %r: no data rows", sheet.name)
            continue
        issues = analyze_sheet(sheet, rules, now, results.warnings)
        results.sheets[sheet.name] = issues
        seen_columns.update(sheet.column_names())

        results.total_blank_cells += sum(issues.blank_cells.values())
        results.total_null_strings += sum(issues.null_strings.values())
        results.total_future_dates += sum(issues.future_dates.values())
        results.total_duplicate_rows += len(issues.duplicate_rows)

    missing = [column for column in rules if column not in seen_columns]
    if missing and results.sheets:
        message = f"Rules defined for column(s) not found in any sheet: {', '.join(missing)}"
        results.warnings.append(message)
        logger.warning(message)

    logger.info(
        "Analysed %d sheet(s): %d blank, %d NULL, %d future, %d duplicate, %d custom",
        len(results.sheets),
        results.total_blank_cells,
        results.total_null_strings,
        results.total_future_dates,
        results.total_duplicate_rows,
        results.total_custom_issues,
    )
    return results


def build_analysis_payload(
    results: AnalysisResults,
    *,
    file_name: str,
    rule_source: Optional[str] = None,
    analysed_at: Optional[datetime] = None,
) -> dict[str, Any]:
    contract = build_contract("sheet_validator.analysis")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": __version__,
        "file": file_name,
        "rule_source": rule_source,
        "analysed_at": utc_now_iso(analysed_at),
        **results.to_dict(),
        "run_summary": build_run_summary(
            command="analyze",
            input_name=file_name,
            metrics={
                "sheets_analysed": len(results.sheets),
                **results.totals(),
                "custom_validation": results.total_custom_issues,
            },
            warnings=results.warnings,
        ),
    }
