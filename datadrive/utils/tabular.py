"""
Tabular Parser: turn an uploaded CSV / Excel file into an ordered header list
and rows of cell strings aligned to it.

Excel cells highlighted with one of the recognised fill colours get the
matching provenance label appended to their value, e.g. ``"Smith (NCTR SOURCE)"``.
"""
from __future__ import annotations

import io
import os
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import List, Optional

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import ParseError


CSV = "csv"
XLSX = "xlsx"

SUPPORTED_EXTENSIONS = {
    ".csv": CSV,
    ".xlsx": XLSX,
    ".xlsm": XLSX,
}

# Canonical "#RRGGBB" fill colour -> provenance label
COLOR_SOURCES: dict[str, str] = {
    "#FFFF00": "FURTHER INVESTIGATION REQUIRED",
    "#FFC000": "NCTR SOURCE",
    "#FF0000": "CORONER'S OFFICE SOURCE",
    "#00B0F0": "BAND DOCUMENTS",
    "#7030A0": "CIRNAC SOURCE",
    "#00B050": "OFFICE OF THE REGISTRAR GENERAL",
}


@dataclass
class ParsedTable:
    columns: List[str]
    rows: List[List[str]] = field(default_factory=list)


def detect_format(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    fmt = SUPPORTED_EXTENSIONS.get(ext)
    if fmt is None:
        raise ParseError(f"unsupported file type: {ext or filename!r}")
    return fmt


def normalize_color_hex(raw: Optional[str]) -> str:
    """Convert ARGB / RGB / shorthand colour strings into upper-case "#RRGGBB"."""
    raw = (raw or "").strip()
    if not raw:
        return ""
    if raw.lower().startswith("0x"):
        raw = raw[2:]
    raw = raw.lstrip("#").upper()

    if len(raw) == 8:
        raw = raw[2:]
    if len(raw) == 6:
        return "#" + raw
    if len(raw) == 3:
        return "#" + "".join(ch * 2 for ch in raw)
    if len(raw) < 6:
        return "#" + raw.ljust(6, "0")
    return "#" + raw[:6]


def _pad(row: List[str], width: int) -> List[str]:
    if len(row) < width:
        return row + [""] * (width - len(row))
    return row[:width]


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def _fill_label(cell) -> Optional[str]:
    fill = getattr(cell, "fill", None)
    if fill is None or not fill.fill_type:
        return None
    color = fill.fgColor
    # theme / indexed colours carry no rgb string
    if color is None or color.type != "rgb" or not isinstance(color.rgb, str):
        return None
    return COLOR_SOURCES.get(normalize_color_hex(color.rgb))


def parse_csv(content: bytes) -> ParsedTable:
    try:
        # header=None: the header line fixes the width, so a wider data row is a
        # tokenizer error instead of being turned into an implicit index
        df = pd.read_csv(
            io.BytesIO(content),
            header=None,
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            encoding="utf-8-sig",
        )
    except (ValueError, UnicodeDecodeError) as exc:
        # EmptyDataError and ParserError are ValueError subclasses
        raise ParseError(f"failed to read csv file: {exc}") from exc

    df = df.fillna("")
    records = [[str(v) for v in rec] for rec in df.itertuples(index=False, name=None)]
    if len(records) < 2:
        raise ParseError("csv file is empty")

    columns = records[0]
    rows = [_pad(rec, len(columns)) for rec in records[1:]]
    return ParsedTable(columns=columns, rows=rows)


def parse_excel(content: bytes) -> ParsedTable:
    try:
        wb = load_workbook(io.BytesIO(content), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise ParseError(f"failed to parse excel file: {exc}") from exc

    ws = wb.worksheets[0]
    sheet_rows = list(ws.iter_rows())
    if not sheet_rows:
        raise ParseError("excel file is empty")

    headers = [_cell_text(c.value) for c in sheet_rows[0]]
    while headers and headers[-1] == "":
        headers.pop()
    if not headers:
        raise ParseError("excel file has no header row")

    rows: List[List[str]] = []
    for cells in sheet_rows[1:]:
        row: List[str] = []
        for col_idx in range(len(headers)):
            if col_idx >= len(cells):
                row.append("")
                continue
            cell = cells[col_idx]
            val = _cell_text(cell.value)
            label = _fill_label(cell)
            if label and val != "":
                val = f"{val} ({label})"
            row.append(val)
        rows.append(row)

    while rows and all(v == "" for v in rows[-1]):
        rows.pop()
    if not rows:
        raise ParseError("excel file has no data rows")

    return ParsedTable(columns=headers, rows=rows)


def parse_tabular(content: bytes, fmt: str) -> ParsedTable:
    if fmt == CSV:
        return parse_csv(content)
    if fmt == XLSX:
        return parse_excel(content)
    raise ParseError(f"unsupported format: {fmt}")
