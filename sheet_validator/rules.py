"""
Data-dictionary rules: typed Rule records and the extractors that build them.

A rule set maps a trimmed column name to the ordered list of rules for that column.
Rules come from a "Validation Rules" worksheet, a bare list of rule records, or a
stored data-dictionary document carrying its records under ``rules_json``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from sheet_validator.cells import cell_text, is_blank
from sheet_validator.config import (
    FIELD_COLUMN_NAME,
    FIELD_FAILURE_MESSAGE,
    FIELD_VALIDATION_TYPE,
    FIELD_VALIDATION_VALUE,
    RULES_SHEET_NAME,
)
from sheet_validator.errors import ParseError, RuleSetError
from sheet_validator.loader import Sheet, Workbook, load_workbook_bytes

logger = logging.getLogger(__name__)

TEXT_SOURCE_FORMATS = {"csv", "tsv", "txt"}


class ValidationType(str, Enum):
    REQUIRED = "REQUIRED"
    ALLOWED_VALUES = "ALLOWED_VALUES"
    NUMERIC_RANGE = "NUMERIC_RANGE"
    REGEX = "REGEX"
    DATE_PAST = "DATE_PAST"
    UNIQUE = "UNIQUE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Rule:
    column_name: str
    validation_type: ValidationType
    validation_value: Optional[str] = None
    failure_message: Optional[str] = None
    raw_type: str = ""

    @property
    def type_label(self) -> str:
        return self.raw_type or self.validation_type.value

    def message_for(self, column: str) -> str:
        if self.failure_message:
            return self.failure_message
        return f"Validation failed for {column} (Rule: {self.type_label})"

    def to_record(self) -> dict[str, Any]:
        return {
            FIELD_COLUMN_NAME: self.column_name,
            FIELD_VALIDATION_TYPE: self.type_label,
            FIELD_VALIDATION_VALUE: self.validation_value,
            FIELD_FAILURE_MESSAGE: self.failure_message,
        }


RuleSet = dict[str, list[Rule]]


def parse_validation_type(raw) -> tuple[ValidationType, str]:
    label = cell_text(raw).strip().upper()
    try:
        return ValidationType(label), label
    except ValueError:
        return ValidationType.UNKNOWN, label


def _optional_text(value) -> Optional[str]:
    if value is None:
        return None
    text = cell_text(value)
    return text if text != "" else None


def build_rule(column: str, record: Mapping[str, Any]) -> Rule:
    validation_type, label = parse_validation_type(record.get(FIELD_VALIDATION_TYPE))
    if validation_type is ValidationType.UNKNOWN:
        logger.warning(
            "Unknown validation type %r for column %r; the rule will always pass.",
            label,
            column,
        )
    return Rule(
        column_name=column,
        validation_type=validation_type,
        validation_value=_optional_text(record.get(FIELD_VALIDATION_VALUE)),
        failure_message=_optional_text(record.get(FIELD_FAILURE_MESSAGE)),
        raw_type=label,
    )


def extract_rules(records: Iterable[Mapping[str, Any]]) -> RuleSet:
    """
    Group rule records by trimmed column name, keeping input order per column.

    Records without a column name are skipped. The result is always a fresh
    mapping; nothing from an earlier extraction survives.
    """
    if records is None or isinstance(records, (str, bytes, Mapping)):
        raise RuleSetError("Rule records must be a list of rule objects")

    rules: RuleSet = {}
    seen = 0
    for position, record in enumerate(records, start=1):
        seen += 1
        if not isinstance(record, Mapping):
            logger.warning("Skipping rule record %d: expected an object, got %s", position, type(record).__name__)
            continue
        column = cell_text(record.get(FIELD_COLUMN_NAME)).strip()
        if not column:
            continue
        rules.setdefault(column, []).append(build_rule(column, record))

    if seen == 0:
        logger.warning("Data dictionary has no rules defined.")
    logger.info("Extracted %d rule(s) for %d column(s)", sum(len(v) for v in rules.values()), len(rules))
    return rules


def sheet_records(sheet: Sheet) -> list[dict[str, Any]]:
    """Row records keyed by the sheet's first-row field names; blank rows are skipped."""
    fields = [(idx, cell_text(value).strip()) for idx, value in enumerate(sheet.header) if not is_blank(value)]
    records = []
    for row in sheet.rows:
        if all(is_blank(value) for value in row):
            continue
        records.append({name: row[idx] if idx < len(row) else None for idx, name in fields})
    return records


def rules_from_workbook(workbook: Workbook) -> RuleSet:
    sheet = workbook.sheet(RULES_SHEET_NAME)
    if sheet is None and workbook.source_format in TEXT_SOURCE_FORMATS and len(workbook.sheets) == 1:
        # Delimited text has no sheet names; its one sheet is the rules table.
        sheet = workbook.sheets[0]
    if sheet is None:
        raise RuleSetError(
            f"Rule workbook has no '{RULES_SHEET_NAME}' sheet. Available sheets: {workbook.sheet_names}"
        )
    header = {cell_text(value).strip() for value in sheet.header}
    missing = [name for name in (FIELD_COLUMN_NAME, FIELD_VALIDATION_TYPE) if name not in header]
    if missing:
        raise RuleSetError(f"'{RULES_SHEET_NAME}' sheet is missing required column(s): {', '.join(missing)}")
    return extract_rules(sheet_records(sheet))


@dataclass
class DataDictionary:
    """A named, stored rule set as served by the dictionary store."""

    name: str
    records: list[dict[str, Any]] = field(default_factory=list)
    source_headers: Optional[list[str]] = None
    dictionary_id: Optional[str] = None

    def rules(self) -> RuleSet:
        return extract_rules(self.records)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DataDictionary":
        records = payload.get("rules_json", payload.get("rules"))
        if isinstance(records, str):
            try:
                records = json.loads(records)
            except json.JSONDecodeError as exc:
                raise RuleSetError(f"Data dictionary rules are not valid JSON: {exc}") from exc
        if not isinstance(records, list):
            raise RuleSetError("Data dictionary content is invalid or empty.")
        headers = payload.get("source_headers_json", payload.get("sourceHeaders"))
        return cls(
            name=str(payload.get("name") or payload.get("dictionaryName") or "Untitled dictionary"),
            records=records,
            source_headers=headers if isinstance(headers, list) else None,
            dictionary_id=str(payload["id"]) if payload.get("id") is not None else None,
        )


def rules_from_payload(payload: Any) -> RuleSet:
    if isinstance(payload, list):
        return extract_rules(payload)
    if isinstance(payload, Mapping):
        return DataDictionary.from_payload(payload).rules()
    raise RuleSetError(f"Rule payload must be a list or a data dictionary object, got {type(payload).__name__}")


def load_rule_source(data: bytes, filename: Optional[str] = None) -> RuleSet:
    """Rules from uploaded bytes: JSON documents or workbooks with a rules sheet."""
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix == ".json" or data.lstrip()[:1] in (b"[", b"{"):
        try:
            payload = json.loads(data.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RuleSetError(f"Rule file is not valid JSON: {exc}") from exc
        return rules_from_payload(payload)

    try:
        workbook = load_workbook_bytes(data, filename=filename)
    except ParseError as exc:
        raise RuleSetError(f"Could not read rule workbook: {exc}") from exc
    return rules_from_workbook(workbook)


def rules_payload(rules: RuleSet) -> list[dict[str, Any]]:
    return [rule.to_record() for column_rules in rules.values() for rule in column_rules]
