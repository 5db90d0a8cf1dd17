"""
loader.py: turns spreadsheet bytes into a Workbook of raw cell grids

Supports: .xlsx .xlsm (openpyxl), .xls .ods (pandas), .csv .tsv .txt (pandas + chardet)

Public API:
    workbook = load_workbook_bytes(data, filename="orders.xlsx")
    for sheet in workbook.sheets:
        sheet.header  : first row, raw values
        sheet.rows    : every following row

Cell values come out as None, str, int/float or bool. Date and time cells are
converted to spreadsheet serial numbers so every source format reads the same way.
"""

from __future__ import annotations

import codecs
import csv
import io
import logging
import math
import zipfile
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Optional

import chardet
import openpyxl
import pandas as pd
from openpyxl.utils.datetime import to_excel

from sheet_validator.cells import coerce_text_cell, column_name, is_blank
from sheet_validator.config import CSV_SHEET_NAME
from sheet_validator.errors import ParseError

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
ODS_MIMETYPE = "application/vnd.oasis.opendocument.spreadsheet"
BINARY_SAMPLE_BYTES = 8192
BINARY_CONTROL_RATIO = 0.05
TEXT_CONTROL_BYTES = {9, 10, 12, 13}


@dataclass
class Sheet:
    """One worksheet: ``grid[0]`` is the header row, the rest are data rows."""

    name: str
    grid: list[list] = field(default_factory=list)

    @property
    def header(self) -> list:
        return list(self.grid[0]) if self.grid else []

    @property
    def rows(self) -> list[list]:
        return self.grid[1:]

    @property
    def has_data(self) -> bool:
        return len(self.grid) > 1

    def columns(self) -> list[tuple[int, str]]:
        """(position, trimmed name) for every header cell that carries a name."""
        return [(idx, column_name(value)) for idx, value in enumerate(self.header) if not is_blank(value)]

    def column_names(self) -> list[str]:
        return [name for _, name in self.columns()]


@dataclass
class Workbook:
    sheets: list[Sheet]
    source_format: str = "xlsx"
    source_bytes: bytes = field(default=b"", repr=False)

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]

    def sheet(self, name: str) -> Optional[Sheet]:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    @classmethod
    def from_grids(cls, grids: dict[str, list[list]], source_format: str = "xlsx") -> "Workbook":
        return cls(
            sheets=[Sheet(name, [list(row) for row in grid]) for name, grid in grids.items()],
            source_format=source_format,
        )


# ══════════════════════════════════════════════════════════════════════════════
# GRID NORMALISATION
# ══════════════════════════════════════════════════════════════════════════════

def _normalise_cell(value):
    if value is None or isinstance(value, (str, bool)):
        return value
    # Durations become day counts like any serial; the date checks read them as early-1900 dates.
    if isinstance(value, (datetime, date, time, timedelta)):
        if pd.isna(value):
            return None
        return to_excel(value)
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _trim_row(row) -> list:
    values = [_normalise_cell(value) for value in row]
    while values and values[-1] is None:
        values.pop()
    return values


def _trim_grid(rows) -> list[list]:
    grid = [_trim_row(row) for row in rows]
    while grid and not grid[-1]:
        grid.pop()
    return grid


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _looks_binary(data: bytes) -> bool:
    sample = data[:BINARY_SAMPLE_BYTES]
    if not sample:
        return False
    control = sum(1 for byte in sample if byte < 32 and byte not in TEXT_CONTROL_BYTES)
    return b"\x00" in sample or control / len(sample) > BINARY_CONTROL_RATIO


def _zip_format(data: bytes) -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = set(archive.namelist())
            if "mimetype" in names:
                mimetype = archive.read("mimetype").decode("utf-8", errors="ignore").strip()
                if mimetype == ODS_MIMETYPE:
                    return "ods"
    except zipfile.BadZipFile as exc:
        raise ParseError(f"Could not read workbook: corrupt zip container ({exc})") from exc
    if {"EncryptedPackage", "EncryptionInfo"}.issubset(names):
        raise ParseError("Could not read workbook: the file is password protected")
    if "xl/workbook.xml" in names:
        return "xlsm" if "xl/vbaProject.bin" in names else "xlsx"
    raise ParseError("Could not read workbook: zip container is not a spreadsheet")


def detect_format(data: bytes, filename: Optional[str] = None) -> str:
    """Sniff the container type from content; the filename only picks between text flavours."""
    if not data:
        raise ParseError("File is empty")
    if data.startswith(ZIP_MAGIC):
        return _zip_format(data)
    if data.startswith(OLE2_MAGIC):
        return "xls"
    if not data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)) and _looks_binary(data):
        raise ParseError("Not a recognised spreadsheet format")
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix in {".tsv", ".txt"}:
        return suffix.lstrip(".")
    return "csv"


# ══════════════════════════════════════════════════════════════════════════════
# TEXT DECODING
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw[:65536])
    detected = result.get("encoding") or "unknown"
    logger.debug("chardet picked %s (confidence %.2f)", detected, result.get("confidence") or 0.0)
    return detected


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line:
      1. Try UTF-8
      2. Try preferred_encoding (chardet result)
      3. Try latin-1
      4. CP1252 with replace (never crashes)
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def _decode_text(raw: bytes) -> str:
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        try:
            return raw.decode("utf-16")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Could not decode UTF-16 text: {exc}") from exc
    text = _read_text_safely(raw, _detect_encoding(raw))
    return text.lstrip("\ufeff")


def _detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to scoring each candidate delimiter by
    column-count consistency and column width.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in [",", ";", "\t", "|"]:
        rows = [row for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim) if row]
        if len(rows) < 2:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = (mode_width * 2.0) + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_openpyxl(data: bytes) -> list[Sheet]:
    try:
        book = openpyxl.load_workbook(io.BytesIO(data), data_only=True)
    except Exception as exc:
        raise ParseError(f"Could not read workbook: {exc}") from exc

    sheets = []
    for ws in book.worksheets:
        rows = ws.iter_rows(min_row=ws.min_row, min_col=ws.min_column, values_only=True)
        sheets.append(Sheet(ws.title, _trim_grid(rows)))
    book.close()
    return sheets


def _load_pandas_workbook(data: bytes, source_format: str) -> list[Sheet]:
    if source_format == "xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd; run: pip install xlrd")
        engine = "xlrd"
    else:
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy; run: pip install odfpy")
        engine = "odf"

    try:
        frames = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, engine=engine)
    except Exception as exc:
        raise ParseError(f"Could not read .{source_format} workbook: {exc}") from exc

    return [
        Sheet(str(name), _trim_grid(frame.astype(object).values.tolist()))
        for name, frame in frames.items()
    ]


def _load_text(data: bytes, source_format: str) -> list[Sheet]:
    text = _decode_text(data)
    delimiter = "\t" if source_format == "tsv" else _detect_delimiter(text)

    width = max((len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)), default=0)
    if width == 0:
        return [Sheet(CSV_SHEET_NAME, [])]

    try:
        frame = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            engine="python",
        )
    except Exception as exc:
        raise ParseError(f"Could not parse .{source_format} file: {exc}") from exc

    frame = frame.astype(object).where(frame.notna(), None)
    rows = [[coerce_text_cell(cell) for cell in row] for row in frame.values.tolist()]
    return [Sheet(CSV_SHEET_NAME, _trim_grid(rows))]


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_workbook_bytes(data: bytes, filename: Optional[str] = None) -> Workbook:
    """
    Parse spreadsheet bytes into a Workbook.

    Raises:
        ParseError   if the bytes are not a spreadsheet this loader understands.
        ImportError  if an optional engine (xlrd, odfpy) is missing.
    """
    source_format = detect_format(data, filename)
    if source_format in {"xlsx", "xlsm"}:
        sheets = _load_openpyxl(data)
    elif source_format in {"xls", "ods"}:
        sheets = _load_pandas_workbook(data, source_format)
    else:
        sheets = _load_text(data, source_format)

    if not sheets:
        raise ParseError("Workbook contains no worksheets")
    logger.info("Loaded %s workbook with %d sheet(s)", source_format, len(sheets))
    return Workbook(sheets=sheets, source_format=source_format, source_bytes=data)


def load_workbook_file(path: "str | Path") -> Workbook:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return load_workbook_bytes(path.read_bytes(), filename=path.name)
