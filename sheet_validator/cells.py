"""Cell value helpers shared by the scanner, the rule evaluator and the report.

Cell values are ``None`` (absent), ``str``, ``int``/``float`` (numbers, possibly a
spreadsheet date serial) or ``bool``. Every coercion here mirrors how a spreadsheet
front-end stringifies a cell, so ``True`` reads as ``"true"`` and ``30.0`` as ``"30"``.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta, timezone

from sheet_validator.config import UNIX_EPOCH_SERIAL

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MS_PER_DAY = 86_400_000

NUMBER_PREFIX_RE = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")
NUMBER_LITERAL_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

MONTH_NAMES = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
ISO_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d{1,6})?)?(?:Z|[+-]\d{2}:?\d{2})?$"
)
SLASH_ISO_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")
NUMERIC_DMY_RE = re.compile(r"^(\d{1,2})([/-])(\d{1,2})\2(\d{4})$")
MONTH_FIRST_RE = re.compile(r"^(?:[A-Za-z]+,?\s+)?([A-Za-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})$")
DAY_FIRST_RE = re.compile(r"^(\d{1,2})(?:st|nd|rd|th)?\s+([A-Za-z]+)\.?,?\s+(\d{4})$")


def is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


def cell_text(value) -> str:
    """Stringify a cell the way a spreadsheet front-end displays it (untrimmed)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    return str(value)


def is_blank(value) -> bool:
    return value is None or cell_text(value).strip() == ""


def column_name(header_value) -> str:
    return cell_text(header_value).strip()


def serial_to_datetime(serial: float) -> datetime | None:
    """Convert a spreadsheet date serial (25569 == 1970-01-01 UTC) to an aware datetime."""
    if not math.isfinite(serial):
        return None
    try:
        offset = timedelta(milliseconds=round((serial - UNIX_EPOCH_SERIAL) * MS_PER_DAY))
        return UNIX_EPOCH + offset
    except OverflowError:
        return None


def _utc(year: int, month: int, day: int) -> datetime | None:
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_calendar_date(text: str) -> datetime | None:
    """
    Parse a calendar-date string into an aware UTC datetime.

    Recognised shapes: ISO dates and datetimes, YYYY/MM/DD, M/D/YYYY (month-first,
    falling back to day-first when the month is out of range), written-out month
    names in either order. Bare numbers are never dates. Returns None when the text
    does not look like a date.
    """
    v = text.strip()
    if not v:
        return None

    m = ISO_DATE_RE.match(v)
    if m:
        return _utc(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    if ISO_DATETIME_RE.match(v):
        candidate = v.replace(" ", "T", 1)
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    m = SLASH_ISO_RE.match(v)
    if m:
        return _utc(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = NUMERIC_DMY_RE.match(v)
    if m:
        a, b, year = int(m.group(1)), int(m.group(3)), int(m.group(4))
        return _utc(year, a, b) or _utc(year, b, a)

    m = MONTH_FIRST_RE.match(v)
    if m:
        month = MONTH_NAMES.get(m.group(1).lower())
        if month:
            return _utc(int(m.group(3)), month, int(m.group(2)))
        return None

    m = DAY_FIRST_RE.match(v)
    if m:
        month = MONTH_NAMES.get(m.group(2).lower())
        if month:
            return _utc(int(m.group(3)), month, int(m.group(1)))

    return None


def parse_number(value) -> float | None:
    """Leading-number parse of a cell (``"15kg"`` -> 15.0); None when nothing parses."""
    if is_number(value):
        return float(value)
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if stripped.startswith(("Infinity", "+Infinity")):
        return math.inf
    if stripped.startswith("-Infinity"):
        return -math.inf
    m = NUMBER_PREFIX_RE.match(stripped)
    if not m:
        return None
    return float(m.group(1))


def strict_number(text: str) -> float | None:
    """Whole-string number parse; an empty string reads as 0."""
    stripped = text.strip()
    if not stripped:
        return 0.0
    if not NUMBER_LITERAL_RE.match(stripped):
        return None
    return float(stripped)


def coerce_text_cell(text: str | None):
    """Type a cell read from delimited text: empty -> None, numbers, TRUE/FALSE."""
    if text is None or text == "":
        return None
    stripped = text.strip()
    if NUMBER_LITERAL_RE.match(stripped):
        number = float(stripped)
        if number.is_integer() and re.match(r"^[+-]?\d+$", stripped):
            return int(stripped)
        return number
    upper = stripped.upper()
    if upper == "TRUE":
        return True
    if upper == "FALSE":
        return False
    return text
