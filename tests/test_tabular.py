from __future__ import annotations

import io

import pytest
from openpyxl import Workbook

from app.services.tabular import TabularParseError, parse_csv_text, parse_spreadsheet, parse_upload


def _xlsx_bytes(rows: list[list[object]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_csv_quoted_fields_and_padding():
    text = 'title,price,description\n"Flat, sea view",250000,"He said ""wow"""\nStudio,90000\n'

    table = parse_csv_text(text)

    assert table.headers == ["title", "price", "description"]
    assert table.rows[0] == {"title": "Flat, sea view", "price": "250000", "description": 'He said "wow"'}
    assert table.rows[1] == {"title": "Studio", "price": "90000", "description": ""}


def test_csv_drops_values_past_last_header_and_blank_lines():
    table = parse_csv_text("title,price\n\nHouse,100,extra\n,\n")

    assert table.rows == [{"title": "House", "price": "100"}]


def test_csv_empty_header_gets_positional_name():
    table = parse_csv_text("title,,price\nA,x,1")

    assert table.headers == ["title", "Column 2", "price"]


@pytest.mark.parametrize("text", ["", "title,price", "title,price\n\n"])
def test_csv_requires_header_and_data_row(text):
    with pytest.raises(TabularParseError, match="CSV must contain headers and at least one data row"):
        parse_csv_text(text)


def test_spreadsheet_cells_become_strings():
    content = _xlsx_bytes([["Title", "Price", "Size"], ["Villa", 590000, 290], [None, None, None]])

    table = parse_spreadsheet(content)

    assert table.headers == ["Title", "Price", "Size"]
    assert table.rows == [{"Title": "Villa", "Price": "590000", "Size": "290"}]


def test_spreadsheet_without_data_rows_is_rejected():
    with pytest.raises(TabularParseError, match="Excel file must contain headers"):
        parse_spreadsheet(_xlsx_bytes([["Title", "Price"]]))


def test_spreadsheet_garbage_is_a_parse_error():
    with pytest.raises(TabularParseError, match="Failed to parse Excel file"):
        parse_spreadsheet(b"not a zip archive")


def test_upload_dispatches_on_extension():
    csv_table = parse_upload("listings.CSV", "\ufefftitle,price\nA,1".encode())
    assert csv_table.headers == ["title", "price"]

    xlsx_table = parse_upload("listings.xlsx", _xlsx_bytes([["title"], ["B"]]))
    assert xlsx_table.rows == [{"title": "B"}]


def test_upload_rejects_unknown_type_and_bad_encoding():
    with pytest.raises(TabularParseError, match="Unsupported file type"):
        parse_upload("listings.pdf", b"%PDF")

    with pytest.raises(TabularParseError, match="UTF-8"):
        parse_upload("listings.csv", "title\nΣπίτι".encode("cp1253"))
