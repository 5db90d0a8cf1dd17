"""
Review session: the owner of rules, the current analysis run, overrides and the
latest report.

Each producing step fully replaces what it produces. A failed analysis leaves the
session idle with no results from an earlier file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from sheet_validator.aggregator import AnalysisResults, analyze_workbook, build_analysis_payload
from sheet_validator.errors import ParseError, RuleSetError, SessionError
from sheet_validator.exporter import export_filename, export_workbook
from sheet_validator.loader import Workbook, load_workbook_bytes
from sheet_validator.overrides import OverrideSet
from sheet_validator.report import Report, build_report, build_report_payload
from sheet_validator.rules import RuleSet, load_rule_source, rules_from_payload

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "IDLE"
    RAW = "RAW"
    REPORTED = "REPORTED"


@dataclass(frozen=True)
class AnalysisRun:
    file_name: str
    workbook: Workbook
    results: AnalysisResults
    analysed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ExportResult:
    file_name: str
    content: bytes
    report: Report


class ValidationSession:
    def __init__(self) -> None:
        self.rules: RuleSet = {}
        self.rule_source: Optional[str] = None
        self.run: Optional[AnalysisRun] = None
        self.overrides = OverrideSet()
        self.report: Optional[Report] = None
        self.state = SessionState.IDLE

    # ── Rules ─────────────────────────────────────────────────────────────────

    def load_rules(self, data: bytes, filename: Optional[str] = None) -> RuleSet:
        """Replace the rule mapping from a rules workbook or JSON file."""
        return self._replace_rules(lambda: load_rule_source(data, filename), filename or "uploaded rules")

    def load_rules_payload(self, payload: Any, label: str = "data dictionary") -> RuleSet:
        return self._replace_rules(lambda: rules_from_payload(payload), label)

    def set_rules(self, rules: RuleSet, label: Optional[str] = None) -> None:
        self.rules = dict(rules)
        self.rule_source = label

    def _replace_rules(self, extract, label: str) -> RuleSet:
        try:
            rules = extract()
        except RuleSetError:
            self.rules = {}
            self.rule_source = None
            raise
        self.set_rules(rules, label)
        return rules

    # ── Analysis ──────────────────────────────────────────────────────────────

    def reset(self) -> None:
        self.run = None
        self.overrides = OverrideSet()
        self.report = None
        self.state = SessionState.IDLE

    def analyze(self, data: bytes, file_name: str, now: Optional[datetime] = None) -> AnalysisRun:
        self.reset()
        try:
            workbook = load_workbook_bytes(data, filename=file_name)
        except ParseError:
            logger.error("Could not parse %s", file_name)
            raise
        analysed_at = now or datetime.now(timezone.utc)
        self.run = AnalysisRun(
            file_name=file_name,
            workbook=workbook,
            results=analyze_workbook(workbook, self.rules, now=analysed_at),
            analysed_at=analysed_at,
        )
        self.state = SessionState.RAW
        return self.run

    def _require_run(self) -> AnalysisRun:
        if self.run is None:
            raise SessionError("No analysis results yet. Analyse a file first.")
        return self.run

    # ── Overrides ─────────────────────────────────────────────────────────────

    def set_override(self, sheet: str, column: str, enabled: bool = True) -> None:
        self._require_run()
        self.overrides.set(sheet, column, enabled)

    def apply_overrides(self, mapping: Mapping[tuple[str, str], bool]) -> None:
        """Replace the override state with the checked boxes of a results view."""
        self._require_run()
        self.overrides = OverrideSet.from_mapping(mapping)

    # ── Report / export ───────────────────────────────────────────────────────

    def generate_report(self, generated_at: Optional[datetime] = None) -> Report:
        run = self._require_run()
        self.report = build_report(
            run.workbook,
            run.results,
            self.overrides,
            file_name=run.file_name,
            generated_at=generated_at,
        )
        self.state = SessionState.REPORTED
        return self.report

    def export(self, generated_at: Optional[datetime] = None) -> ExportResult:
        report = self.generate_report(generated_at)
        run = self._require_run()
        return ExportResult(
            file_name=export_filename(run.file_name, report.generated_at),
            content=export_workbook(run.workbook, report),
            report=report,
        )

    def analysis_payload(self) -> dict[str, Any]:
        run = self._require_run()
        return build_analysis_payload(
            run.results,
            file_name=run.file_name,
            rule_source=self.rule_source,
            analysed_at=run.analysed_at,
        )

    def report_payload(self) -> dict[str, Any]:
        run = self._require_run()
        report = self.generate_report()
        return build_report_payload(report, overrides=self.overrides, warnings=run.results.warnings)
