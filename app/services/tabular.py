from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from pathlib import PurePath

from openpyxl import load_workbook

from app.core.logging import get_logger

logger = get_logger(__name__)

CSV_EXTENSIONS = {".csv", ".txt"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xlsm"}


class TabularParseError(ValueError):
    """Uploaded or pasted tabular data could not be turned into rows."""


@dataclass(frozen=True)
class ParsedTable:
    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)


def _clean_header(raw: object, index: int) -> str:
    cleaned = ("" if raw is None else str(raw)).strip().replace('"', "")
    return cleaned or f"Column {index + 1}"


def _cell_text(value: object) -> str:
    return "" if value is None else str(value).strip()


def _is_blank(values: list[str]) -> bool:
    return all(not v for v in values)


def _zip_rows(headers: list[str], body: list[list[str]]) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for values in body:
        row: dict[str, str] = {}
        for index, header in enumerate(headers):
            row[header] = values[index] if index < len(values) else ""
        rows.append(row)
    return rows


def parse_csv_text(text: str) -> ParsedTable:
    """
    Parse comma-separated text whose first line is the header row.

    Quoted fields (embedded commas, doubled quotes, line breaks) are honoured.
    Short rows are padded with ``""``, values past the last header are dropped
    and fully blank lines are ignored.
    """
    reader = csv.reader(io.StringIO(text.strip()), skipinitialspace=True)
    lines = [[value.strip() for value in line] for line in reader]
    lines = [line for line in lines if line and not _is_blank(line)]

    if len(lines) < 2:
        raise TabularParseError("CSV must contain headers and at least one data row")

    headers = [_clean_header(h, i) for i, h in enumerate(lines[0])]
    return ParsedTable(headers=headers, rows=_zip_rows(headers, lines[1:]))


def parse_spreadsheet(content: bytes) -> ParsedTable:
    """Parse the first worksheet of an Excel workbook; every cell becomes a string."""
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        try:
            worksheet = workbook.worksheets[0]
            raw_rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
        finally:
            workbook.close()
    except Exception as exc:
        logger.warning("import.spreadsheet.parse_failed", extra={"error": str(exc)})
        raise TabularParseError(f"Failed to parse Excel file: {exc}") from exc

    lines = [[_cell_text(v) for v in row] for row in raw_rows]
    lines = [line for line in lines if line and not _is_blank(line)]

    if len(lines) < 2:
        raise TabularParseError("Excel file must contain headers and at least one data row")

    # Keep the header width; openpyxl pads rows to the sheet's max column.
    header_line = lines[0]
    while header_line and not header_line[-1]:
        header_line = header_line[:-1]
    headers = [_clean_header(h, i) for i, h in enumerate(header_line)]
    return ParsedTable(headers=headers, rows=_zip_rows(headers, lines[1:]))


def parse_upload(filename: str | None, content: bytes) -> ParsedTable:
    suffix = PurePath(filename or "").suffix.lower()

    if suffix in SPREADSHEET_EXTENSIONS:
        return parse_spreadsheet(content)

    if suffix in CSV_EXTENSIONS:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise TabularParseError("CSV file must be UTF-8 encoded") from exc
        return parse_csv_text(text)

    raise TabularParseError(
        f"Unsupported file type '{suffix or filename}'. Upload a .csv or .xlsx file"
    )
