from __future__ import annotations

import io
import logging
import re
from datetime import date, datetime, timezone
from typing import Optional

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from sheet_validator.config import EXPORT_NAME_TEMPLATE, REPORT_TITLE, SUMMARY_SHEET_NAME
from sheet_validator.loader import Workbook
from sheet_validator.report import SUMMARY_HEADER, ColumnStatus, Report, report_rows

logger = logging.getLogger(__name__)

SPREADSHEET_SUFFIX_RE = re.compile(r"\.(xlsx|xlsm|xls|csv|tsv|txt|ods)$", re.IGNORECASE)
MAX_SHEET_TITLE = 31

STATUS_FILLS = {
    ColumnStatus.PASS.value: PatternFill("solid", fgColor="C6EFCE"),        # soft green
    ColumnStatus.FAIL.value: PatternFill("solid", fgColor="FFC7CE"),        # soft red
    ColumnStatus.OVERRIDDEN.value: PatternFill("solid", fgColor="EDEDED"),  # grey
}
HEADER_COLOR = "4472C4"


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60) -> list[int]:
    width = max((len(row) for row in rows), default=0)
    widths = [min_width] * width
    for row in rows:
        # Title and label rows span the sheet; only table cells size the columns.
        if len(row) < 2:
            continue
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def _style_summary(ws, rows: list[list]) -> None:
    """Bold title and section rows, coloured table headers and status cells, column widths."""
    font = _header_font()
    fill = _header_fill(HEADER_COLOR)
    for row_idx, row in enumerate(rows, start=1):
        if not row:
            continue
        first = ws.cell(row=row_idx, column=1)
        if row_idx == 1 and row[0] == REPORT_TITLE:
            first.font = Font(bold=True, size=14)
        elif row == SUMMARY_HEADER:
            for col_idx in range(1, len(row) + 1):
                cell = ws.cell(row=row_idx, column=col_idx)
                cell.font = font
                cell.fill = fill
                cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
        elif len(row) == 1 or (len(row) == 2 and str(row[0]).endswith(":")):
            first.font = Font(bold=True)

        status = row[-1]
        if len(row) > 1 and status in STATUS_FILLS:
            ws.cell(row=row_idx, column=len(row)).fill = STATUS_FILLS[status]

    for i, width in enumerate(_infer_col_widths(rows), start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def summary_sheet_title(existing: list[str]) -> str:
    """First free summary sheet name; an existing summary sheet is never overwritten."""
    if SUMMARY_SHEET_NAME not in existing:
        return SUMMARY_SHEET_NAME
    n = 2
    while f"{SUMMARY_SHEET_NAME} ({n})" in existing:
        n += 1
    return f"{SUMMARY_SHEET_NAME} ({n})"


def _write_row(ws, row_idx: int, row: list) -> None:
    """Write literal values: control characters are dropped and ``=`` text stays text."""
    for col_idx, value in enumerate(row, start=1):
        if isinstance(value, str):
            value = ILLEGAL_CHARACTERS_RE.sub("", value)
        cell = ws.cell(row=row_idx, column=col_idx, value=value)
        if isinstance(value, str) and value.startswith("="):
            cell.data_type = "s"


def _reopen_original(workbook: Workbook):
    try:
        return openpyxl.load_workbook(io.BytesIO(workbook.source_bytes))
    except Exception as exc:
        logger.warning("Could not reopen original workbook, rewriting from cell values: %s", exc)
        return None


def _rebuild_from_grids(workbook: Workbook):
    book = openpyxl.Workbook()
    book.remove(book.active)
    for sheet in workbook.sheets:
        ws = book.create_sheet(sheet.name[:MAX_SHEET_TITLE])
        for row_idx, row in enumerate(sheet.grid, start=1):
            _write_row(ws, row_idx, row)
    return book


def export_workbook(workbook: Workbook, report: Report) -> bytes:
    """
    Every original sheet plus one appended summary sheet, as .xlsx bytes.

    xlsx/xlsm sources are reopened so original sheets keep their formatting; every
    other source is rewritten from the loaded cell grid.
    """
    book = None
    if workbook.source_format in {"xlsx", "xlsm"} and workbook.source_bytes:
        book = _reopen_original(workbook)
    if book is None:
        book = _rebuild_from_grids(workbook)

    rows = report_rows(report)
    ws = book.create_sheet(summary_sheet_title(book.sheetnames))
    for row_idx, row in enumerate(rows, start=1):
        _write_row(ws, row_idx, row)
    _style_summary(ws, rows)

    buffer = io.BytesIO()
    book.save(buffer)
    logger.info("Exported %d sheet(s) plus summary %r", len(book.sheetnames) - 1, ws.title)
    return buffer.getvalue()


def export_filename(file_name: str, on_date: Optional[date] = None) -> str:
    """``orders.XLSX`` on 2024-03-01 -> ``Validation_Report_orders_2024-03-01.xlsx``."""
    base = SPREADSHEET_SUFFIX_RE.sub("", file_name or "Report")
    if isinstance(on_date, datetime):
        on_date = on_date.astimezone(timezone.utc).date()
    day = (on_date or datetime.now(timezone.utc).date()).isoformat()
    return EXPORT_NAME_TEMPLATE.format(base=base, day=day)
