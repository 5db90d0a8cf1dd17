"""
Structural checks that need no data dictionary.

Three per-cell counters run side by side (blank, "NULL" placeholder, future date)
and are not mutually exclusive. Duplicate rows are a separate whole-sheet pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sheet_validator.cells import is_blank, is_number, parse_calendar_date, serial_to_datetime
from sheet_validator.config import FIRST_DATA_ROW
from sheet_validator.loader import Sheet


@dataclass
class StructuralScan:
    blank_cells: dict[str, int] = field(default_factory=dict)
    null_strings: dict[str, int] = field(default_factory=dict)
    future_dates: dict[str, int] = field(default_factory=dict)


def is_null_string(value) -> bool:
    return isinstance(value, str) and value.strip().lower() == "null"


def is_future_serial(value, now: datetime) -> bool:
    """Numbers are read as date serials; serials too large to convert are never flagged."""
    moment = serial_to_datetime(float(value))
    return moment is not None and moment > now


def is_future_date_text(value: str, now: datetime) -> bool:
    """Strings that parse as a calendar date; unparseable text is never flagged."""
    moment = parse_calendar_date(value)
    return moment is not None and moment > now


def is_future_date(value, now: datetime) -> bool:
    if is_number(value):
        return is_future_serial(value, now)
    if isinstance(value, str):
        return is_future_date_text(value, now)
    return False


def scan_cells(sheet: Sheet, now: Optional[datetime] = None) -> StructuralScan:
    now = now or datetime.now(timezone.utc)
    columns = sheet.columns()
    scan = StructuralScan(
        blank_cells={name: 0 for _, name in columns},
        null_strings={name: 0 for _, name in columns},
        future_dates={name: 0 for _, name in columns},
    )

    for row in sheet.rows:
        for idx, name in columns:
            value = row[idx] if idx < len(row) else None
            if is_blank(value):
                scan.blank_cells[name] += 1
            if is_null_string(value):
                scan.null_strings[name] += 1
            if is_future_date(value, now):
                scan.future_dates[name] += 1
    return scan


def _typed_key(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return ("bool", value)
    if is_number(value):
        return ("number", float(value))
    if isinstance(value, float):
        return ("number", "nan")
    return (type(value).__name__, value)


def row_signature(row: list) -> tuple:
    """Exact, type-sensitive row identity; ``1`` and ``"1"`` differ, ``1`` and ``1.0`` do not."""
    keys = [_typed_key(value) for value in row]
    while keys and keys[-1] is None:
        keys.pop()
    return tuple(keys)


def find_duplicate_rows(sheet: Sheet) -> list[int]:
    """Sheet row numbers of every repeat of an earlier row; first occurrences are never listed."""
    seen: set[tuple] = set()
    duplicates = []
    for index, row in enumerate(sheet.rows):
        signature = row_signature(row)
        if signature in seen:
            duplicates.append(index + FIRST_DATA_ROW)
        else:
            seen.add(signature)
    return duplicates
