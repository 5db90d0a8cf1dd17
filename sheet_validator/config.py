"""Constants and environment-driven settings for sheet-validator."""

from __future__ import annotations

import os
from dataclasses import dataclass

# ── Formats ────────────────────────────────────────────────────────────────────
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
MODERN_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
LEGACY_WORKBOOK_FORMATS = {".xls", ".ods"}
ALL_SUPPORTED_FORMATS = TEXT_FORMATS | MODERN_WORKBOOK_FORMATS | LEGACY_WORKBOOK_FORMATS
RULE_FILE_FORMATS = ALL_SUPPORTED_FORMATS | {".json"}

# ── Rule dictionary layout ─────────────────────────────────────────────────────
RULES_SHEET_NAME = "Validation Rules"
FIELD_COLUMN_NAME = "Column Name"
FIELD_VALIDATION_TYPE = "Validation Type"
FIELD_VALIDATION_VALUE = "Validation Value"
FIELD_FAILURE_MESSAGE = "Failure Message"
RULE_FIELDS = (
    FIELD_COLUMN_NAME,
    FIELD_VALIDATION_TYPE,
    FIELD_VALIDATION_VALUE,
    FIELD_FAILURE_MESSAGE,
)

# ── Report / export ────────────────────────────────────────────────────────────
SUMMARY_SHEET_NAME = "Validation Summary"
REPORT_TITLE = "Data Validation Summary Report"
EXPORT_NAME_TEMPLATE = "Validation_Report_{base}_{day}.xlsx"
CSV_SHEET_NAME = "Sheet1"

# Sheet row number of the first data row (row 1 is the header).
FIRST_DATA_ROW = 2

# Spreadsheet serial for 1970-01-01 (days since the 1899-12-30 epoch).
UNIX_EPOCH_SERIAL = 25569

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_MAX_FILE_MB = 100


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    api_url: str | None = None
    api_token: str | None = None
    timeout: int = DEFAULT_TIMEOUT_SECONDS
    max_file_mb: int = DEFAULT_MAX_FILE_MB
    output_stamp: str | None = None

    @property
    def max_file_bytes(self) -> int:
        return self.max_file_mb * 1024 * 1024

    @property
    def remote_enabled(self) -> bool:
        return bool(self.api_url)


def load_settings(**overrides) -> Settings:
    """Read settings from the environment; keyword overrides win when not None."""
    values = {
        "api_url": os.environ.get("SHEET_VALIDATOR_API_URL") or None,
        "api_token": os.environ.get("SHEET_VALIDATOR_API_TOKEN") or None,
        "timeout": _env_int("SHEET_VALIDATOR_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        "max_file_mb": _env_int("SHEET_VALIDATOR_MAX_FILE_MB", DEFAULT_MAX_FILE_MB),
        "output_stamp": os.environ.get("SHEET_VALIDATOR_OUTPUT_STAMP") or None,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(**values)
