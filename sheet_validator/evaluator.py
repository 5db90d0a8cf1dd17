"""
Custom rule evaluation for one sheet.

Each rule is turned into a cell check once (patterns compiled, ranges parsed) and
then run down its column. UNIQUE is a column-wide pass handled separately. Rule
problems never raise: a malformed pattern or range falls back to a fixed verdict and
is recorded as a diagnostic.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sheet_validator.cells import (
    cell_text,
    is_blank,
    is_number,
    parse_calendar_date,
    parse_number,
    serial_to_datetime,
    strict_number,
)
from sheet_validator.config import FIRST_DATA_ROW
from sheet_validator.loader import Sheet
from sheet_validator.rules import Rule, RuleSet, ValidationType

logger = logging.getLogger(__name__)

Check = Callable[[Any], bool]

RANGE_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*$")


@dataclass
class Issue:
    row: int
    value: Any
    message: str
    rule_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "value": self.value,
            "message": self.message,
            "rule_type": self.rule_type,
        }


def note(warnings: Optional[list[str]], message: str) -> None:
    """Record a diagnostic once per run."""
    if warnings is None:
        logger.warning(message)
        return
    if message not in warnings:
        warnings.append(message)
        logger.warning(message)


def parse_numeric_range(text: str) -> Optional[tuple[float, float]]:
    """``"10-20"`` -> (10.0, 20.0). Negative bounds work (``"-5--1"``); None when unusable."""
    m = RANGE_RE.match(text)
    if m:
        return float(m.group(1)), float(m.group(2))
    parts = text.split("-")
    low = strict_number(parts[0])
    high = strict_number(parts[1]) if len(parts) > 1 else None
    if low is None or high is None:
        return None
    return low, high


def _date_moment(value) -> Optional[datetime]:
    if is_number(value):
        return serial_to_datetime(float(value))
    if isinstance(value, str):
        return parse_calendar_date(value)
    return None


# ══════════════════════════════════════════════════════════════════════════════
# CHECK BUILDERS: return None when the rule is skipped (always valid)
# ══════════════════════════════════════════════════════════════════════════════

def _required_check(rule: Rule, column: str, now: datetime, warnings) -> Optional[Check]:
    return lambda value: not is_blank(value)


def _allowed_values_check(rule: Rule, column: str, now: datetime, warnings) -> Optional[Check]:
    if rule.validation_value is None:
        return None
    allowed = {part.strip().lower() for part in rule.validation_value.split(",")}
    return lambda value: cell_text(value).strip().lower() in allowed


def _numeric_range_check(rule: Rule, column: str, now: datetime, warnings) -> Optional[Check]:
    if rule.validation_value is None:
        return lambda value: False
    bounds = parse_numeric_range(rule.validation_value)
    if bounds is None:
        note(
            warnings,
            f"NUMERIC_RANGE for column '{column}' has unusable bounds "
            f"'{rule.validation_value}'; every value will fail.",
        )
        return lambda value: False
    low, high = bounds

    def check(value) -> bool:
        number = parse_number(value)
        return number is not None and low <= number <= high

    return check


def _regex_check(rule: Rule, column: str, now: datetime, warnings) -> Optional[Check]:
    if rule.validation_value is None:
        return lambda value: False
    try:
        pattern = re.compile(rule.validation_value)
    except re.error as exc:
        note(
            warnings,
            f"Invalid regex for column '{column}': {rule.validation_value!r} ({exc}). Skipping rule.",
        )
        return None
    return lambda value: pattern.search(cell_text(value)) is not None


def _date_past_check(rule: Rule, column: str, now: datetime, warnings) -> Optional[Check]:
    def check(value) -> bool:
        moment = _date_moment(value)
        return moment is not None and moment < now

    return check


def _unknown_check(rule: Rule, column: str, now: datetime, warnings) -> Optional[Check]:
    note(warnings, f"Unknown validation type '{rule.type_label}' for column '{column}'. Skipping.")
    return None


CHECK_BUILDERS = {
    ValidationType.REQUIRED: _required_check,
    ValidationType.ALLOWED_VALUES: _allowed_values_check,
    ValidationType.NUMERIC_RANGE: _numeric_range_check,
    ValidationType.REGEX: _regex_check,
    ValidationType.DATE_PAST: _date_past_check,
    ValidationType.UNKNOWN: _unknown_check,
}


def build_check(rule: Rule, column: str, now: datetime, warnings: Optional[list[str]] = None) -> Optional[Check]:
    return CHECK_BUILDERS[rule.validation_type](rule, column, now, warnings)


# ══════════════════════════════════════════════════════════════════════════════
# COLUMN PASSES
# ══════════════════════════════════════════════════════════════════════════════

def unique_violations(values: list, column: str) -> list[Issue]:
    """Every repeat of a trimmed, case-folded non-blank value; first occurrences pass."""
    seen: set[str] = set()
    issues = []
    for offset, value in enumerate(values):
        if is_blank(value):
            continue
        key = cell_text(value).strip().lower()
        if key in seen:
            issues.append(Issue(
                row=offset + FIRST_DATA_ROW,
                value=value,
                message=f"Value '{cell_text(value)}' in column '{column}' is not unique.",
                rule_type=ValidationType.UNIQUE.value,
            ))
        else:
            seen.add(key)
    return issues


def evaluate_column(
    values: list,
    column: str,
    column_rules: list[Rule],
    now: datetime,
    warnings: Optional[list[str]] = None,
) -> list[Issue]:
    issues: list[Issue] = []
    for rule in column_rules:
        if rule.validation_type is ValidationType.UNIQUE:
            continue
        check = build_check(rule, column, now, warnings)
        if check is None:
            continue
        message = rule.message_for(column)
        for offset, value in enumerate(values):
            if not check(value):
                issues.append(Issue(offset + FIRST_DATA_ROW, value, message, rule.type_label))

    # One UNIQUE pass per column however many UNIQUE rules it carries.
    if any(rule.validation_type is ValidationType.UNIQUE for rule in column_rules):
        issues.extend(unique_violations(values, column))
    return issues


def evaluate_sheet(
    sheet: Sheet,
    rules: RuleSet,
    now: Optional[datetime] = None,
    warnings: Optional[list[str]] = None,
) -> dict[str, list[Issue]]:
    """Custom-rule issues keyed by column; only columns that have rules get an entry."""
    now = now or datetime.now(timezone.utc)
    results: dict[str, list[Issue]] = {}
    if not rules:
        return results

    for idx, column in sheet.columns():
        column_rules = rules.get(column)
        if not column_rules:
            continue
        values = [row[idx] if idx < len(row) else None for row in sheet.rows]
        issues = results.setdefault(column, [])
        already = {(issue.row, issue.rule_type) for issue in issues}
        for issue in evaluate_column(values, column, column_rules, now, warnings):
            # A repeated header name folds into the same column; never count a row twice.
            if issue.rule_type == ValidationType.UNIQUE.value and (issue.row, issue.rule_type) in already:
                continue
            issues.append(issue)
    return results
