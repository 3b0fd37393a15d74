"""File parsing functions for CSV, XLS and XLSX imports."""

import csv
import io
import zipfile
from datetime import date, datetime
from typing import Any

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import ParsingError, UnsupportedTypeError

DEFAULT_MAX_ROWS = 5000

CSV_MIME_TYPES = {"text/csv", "application/csv", "text/plain"}
XLS_MIME_TYPES = {"application/vnd.ms-excel"}
XLSX_MIME_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}

EXTENSION_TYPES = {"csv": "csv", "xls": "xls", "xlsx": "xlsx"}

ParsedFile = tuple[list[str], list[dict[str, str]]]


def detect_file_type(mime_type: str | None, filename: str | None = None) -> str:
    """Resolve an upload to one of ``csv``, ``xls`` or ``xlsx``.

    The mime type wins when it is specific; browsers often send
    ``application/octet-stream`` so the file extension is the fallback.

    Raises:
        UnsupportedTypeError: If neither identifies a supported format.
    """
    mime = (mime_type or "").split(";")[0].strip().lower()
    ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else ""

    if mime in XLSX_MIME_TYPES:
        return "xlsx"
    if mime in XLS_MIME_TYPES:
        return "xls"
    if mime in CSV_MIME_TYPES and ext in ("", "csv", "txt"):
        return "csv"
    if ext in EXTENSION_TYPES:
        return EXTENSION_TYPES[ext]

    raise UnsupportedTypeError("Unsupported mime type")


def parse_upload(
    content: bytes,
    mime_type: str | None,
    filename: str | None = None,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> ParsedFile:
    """Parse an uploaded spreadsheet into headers and rows of strings.

    Raises:
        UnsupportedTypeError: For formats other than CSV, XLS and XLSX.
        ParsingError: If the content is malformed or has no header row.
    """
    file_type = detect_file_type(mime_type, filename)
    if file_type == "csv":
        return parse_csv(content, max_rows)
    if file_type == "xls":
        return parse_xls(content, max_rows)
    return parse_xlsx(content, max_rows)


def _cell_to_str(value: Any) -> str:
    """Render a spreadsheet cell the way a user typed it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, float) and value.is_integer():
        # Spreadsheet engines store every number as float
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _clean_headers(raw_headers) -> list[str]:
    headers = [_cell_to_str(h) for h in raw_headers]
    if not any(headers):
        raise ParsingError("File has no valid headers")
    return headers


def _build_rows(headers: list[str], row_values_iter, max_rows: int) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for row_values in row_values_iter:
        row_dict: dict[str, str] = {}
        for j, header in enumerate(headers):
            if not header:
                continue
            val = row_values[j] if j < len(row_values) else None
            row_dict[header] = _cell_to_str(val)
        # Entirely blank rows carry no data
        if any(v for v in row_dict.values()):
            if len(rows) >= max_rows:
                raise ParsingError(f"File exceeds the maximum of {max_rows} data rows")
            rows.append(row_dict)
    return rows


def parse_csv(file_content: bytes, max_rows: int = DEFAULT_MAX_ROWS) -> ParsedFile:
    """Parse CSV file content into headers and rows.

    Tries UTF-8 first (with or without BOM), falls back to Latin-1.
    """
    text = None
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            text = file_content.decode(encoding)
            break
        except UnicodeDecodeError:
            continue

    if not text or not text.strip():
        raise ParsingError("CSV file has no headers")

    try:
        reader = csv.reader(io.StringIO(text))
        raw_headers = next(reader)
        headers = [h.strip() for h in raw_headers]
        if not any(headers):
            raise ParsingError("CSV file has no valid headers")
        rows = _build_rows(headers, reader, max_rows)
    except csv.Error as e:
        raise ParsingError(f"Malformed CSV content: {e}") from e

    return [h for h in headers if h], rows


def parse_xlsx(file_content: bytes, max_rows: int = DEFAULT_MAX_ROWS) -> ParsedFile:
    """Parse XLSX file content into headers and rows (first sheet only).

    Uses openpyxl read_only mode and iterates rows lazily.
    """
    try:
        wb = load_workbook(filename=io.BytesIO(file_content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParsingError(f"Malformed XLSX content: {e}") from e

    try:
        ws = wb.active
        if ws is None:
            raise ParsingError("XLSX file has no worksheets")

        row_iter = ws.iter_rows(values_only=True)
        try:
            raw_headers = next(row_iter)
        except StopIteration:
            raise ParsingError("XLSX file is empty") from None

        headers = _clean_headers(raw_headers)
        rows = _build_rows(headers, row_iter, max_rows)
    finally:
        wb.close()

    return [h for h in headers if h], rows


def parse_xls(file_content: bytes, max_rows: int = DEFAULT_MAX_ROWS) -> ParsedFile:
    """Parse legacy XLS file content into headers and rows (first sheet only)."""
    try:
        wb = xlrd.open_workbook(file_contents=file_content)
    except xlrd.XLRDError as e:
        raise ParsingError(f"Malformed XLS content: {e}") from e

    ws = wb.sheet_by_index(0)
    if ws.nrows == 0:
        raise ParsingError("XLS file is empty")

    def _values(r: int) -> list[Any]:
        values = []
        for c, cell in enumerate(ws.row(r)):
            if cell.ctype == xlrd.XL_CELL_DATE:
                values.append(xlrd.xldate.xldate_as_datetime(cell.value, wb.datemode))
            else:
                values.append(ws.cell_value(r, c))
        return values

    headers = _clean_headers(_values(0))
    rows = _build_rows(headers, (_values(r) for r in range(1, ws.nrows)), max_rows)
    return [h for h in headers if h], rows
