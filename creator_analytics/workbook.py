"""Decode uploaded spreadsheet bytes into plain sheet grids.

Supported containers:
  .xlsx -> openpyxl (data_only, so formulas come back as their cached values)
  .xls  -> xlrd (date cells converted with the workbook's datemode)
  .csv  -> csv module, single sheet named after the file stem

The reader does not interpret headers. Every sheet becomes a list of rows,
each row a list of cell values (str, int, float, bool, date, datetime or
None). Blank strings are returned as None and trailing empty rows dropped.
"""

import codecs
import csv
import io
import logging
from pathlib import Path
from typing import Any

import openpyxl
import xlrd

from creator_analytics.errors import CorruptFileError, UnsupportedFormatError

logger = logging.getLogger(__name__)

RawWorkbook = dict[str, list[list[Any]]]

FORMAT_CSV = "csv"
FORMAT_XLS = "xls"
FORMAT_XLSX = "xlsx"

ALLOWED_EXTENSIONS = {".csv": FORMAT_CSV, ".xls": FORMAT_XLS, ".xlsx": FORMAT_XLSX}

CONTENT_TYPES = {
    "text/csv": FORMAT_CSV,
    "application/csv": FORMAT_CSV,
    "application/vnd.ms-excel": FORMAT_XLS,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FORMAT_XLSX,
}

_XLSX_MAGIC = b"PK\x03\x04"
_XLS_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_CSV_DELIMITERS = ",;\t"


def detect_format(
    data: bytes,
    filename: str | None = None,
    content_type: str | None = None,
) -> str:
    """Resolve which decoder to use for ``data``.

    The file extension wins over the MIME type. For the two binary
    containers the magic bytes override the extension, since exports are
    regularly saved as .xls while really being .xlsx (and vice versa).

    Raises:
        UnsupportedFormatError: If the file is not CSV, XLS or XLSX.
    """
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix:
        fmt = ALLOWED_EXTENSIONS.get(suffix)
        if fmt is None:
            raise UnsupportedFormatError(
                f"Unsupported file type '{suffix}'. "
                f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        if fmt in (FORMAT_XLS, FORMAT_XLSX):
            if data.startswith(_XLSX_MAGIC):
                return FORMAT_XLSX
            if data.startswith(_XLS_MAGIC):
                return FORMAT_XLS
        return fmt

    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in CONTENT_TYPES:
            return CONTENT_TYPES[mime]

    if data.startswith(_XLSX_MAGIC):
        return FORMAT_XLSX
    if data.startswith(_XLS_MAGIC):
        return FORMAT_XLS
    if b"\x00" not in data[:4096] or data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return FORMAT_CSV

    raise UnsupportedFormatError(
        "Could not recognise the file. Please upload a CSV, XLS or XLSX export."
    )


def _clean_cell(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _trim_rows(rows: list[list[Any]]) -> list[list[Any]]:
    """Clean every cell and drop trailing rows that are entirely empty."""
    cleaned = [[_clean_cell(v) for v in row] for row in rows]
    while cleaned and all(v is None for v in cleaned[-1]):
        cleaned.pop()
    return cleaned


def _read_xlsx(data: bytes) -> RawWorkbook:
    # read_only=False: LinkedIn exports carry unreliable dimension metadata
    # (max_col=1 in read_only mode).
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), read_only=False, data_only=True)
    except Exception as exc:
        raise CorruptFileError(f"Failed to read spreadsheet: {exc}") from exc

    try:
        return {
            ws.title: _trim_rows([list(row) for row in ws.iter_rows(values_only=True)])
            for ws in wb.worksheets
        }
    finally:
        wb.close()


def _xls_cell(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        try:
            return xlrd.xldate.xldate_as_datetime(cell.value, datemode)
        except (ValueError, xlrd.xldate.XLDateError):
            return cell.value
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    return cell.value


def _read_xls(data: bytes) -> RawWorkbook:
    try:
        book = xlrd.open_workbook(file_contents=data)
    except Exception as exc:
        raise CorruptFileError(f"Failed to read spreadsheet: {exc}") from exc

    sheets: RawWorkbook = {}
    for sheet in book.sheets():
        rows = [
            [_xls_cell(cell, book.datemode) for cell in sheet.row(r)]
            for r in range(sheet.nrows)
        ]
        sheets[sheet.name] = _trim_rows(rows)
    return sheets


def _decode_text(data: bytes) -> str:
    """Decode CSV bytes with the first encoding that fits."""
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        encodings = ("utf-16",)
    else:
        encodings = ("utf-8-sig", "cp1252", "latin-1")
    for encoding in encodings:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise CorruptFileError("Could not decode the CSV file as text.")


def _read_csv(data: bytes, sheet_name: str) -> RawWorkbook:
    text = _decode_text(data)
    sample = text[:8192]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=_CSV_DELIMITERS)
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    try:
        rows = [list(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    except csv.Error as exc:
        raise CorruptFileError(f"Failed to read CSV file: {exc}") from exc
    return {sheet_name: _trim_rows(rows)}


def read_workbook(
    data: bytes,
    filename: str | None = None,
    content_type: str | None = None,
) -> RawWorkbook:
    """Decode raw upload bytes into a RawWorkbook.

    Args:
        data: File contents.
        filename: Original file name; its extension is the primary format hint.
        content_type: MIME type sent by the client, used when there is no
            extension.

    Returns:
        Mapping of sheet name to rows, in workbook order.

    Raises:
        UnsupportedFormatError: If the format is not CSV, XLS or XLSX.
        CorruptFileError: If the container cannot be decoded.
    """
    fmt = detect_format(data, filename, content_type)

    if fmt == FORMAT_XLSX:
        workbook = _read_xlsx(data)
    elif fmt == FORMAT_XLS:
        workbook = _read_xls(data)
    else:
        stem = Path(filename).stem if filename else ""
        workbook = _read_csv(data, stem or "Sheet1")

    logger.info(
        "Decoded %s file with sheets: %s",
        fmt,
        {name: len(rows) for name, rows in workbook.items()},
    )
    return workbook
