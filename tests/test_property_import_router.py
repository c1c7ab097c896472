from __future__ import annotations

import io
import json

from openpyxl import Workbook

from app.core.config import settings
from app.db import models

CSV_TEXT = "title,price,sqr_meters\nBeautiful Apartment,250000,85\n,100,\nLuxury Villa,590000,290\n"
MAPPING = {"title": "title", "price": "price", "sqr_meters": "sqr_meters"}


def test_import_requires_authentication(client):
    r = client.post("/api/properties/import", json={"csv_data": CSV_TEXT, "column_mapping": MAPPING})

    assert r.status_code == 401
    body = r.json()
    assert body == {"success": False, "error": "Authentication required", "code": "http_error", "status": 401}


def test_plain_user_cannot_import(client, headers):
    r = client.post(
        "/api/properties/import",
        json={"csv_data": CSV_TEXT, "column_mapping": MAPPING, "import_type": "csv_text"},
        headers=headers("user"),
    )

    assert r.status_code == 403
    assert r.json()["error"] == "Agent or admin access required"


def test_csv_text_import_reports_counts(client, headers, db_session):
    r = client.post(
        "/api/properties/import",
        json={"csv_data": CSV_TEXT, "column_mapping": MAPPING, "import_type": "csv_text"},
        headers=headers("agent"),
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Import completed: 2 successful, 1 failed"
    assert (body["total"], body["success"], body["failed"]) == (3, 2, 1)
    assert body["policy"] == "best_effort"
    assert body["error_details"] == [
        {
            "row": 2,
            "data": {"title": "", "price": "100", "sqr_meters": ""},
            "errors": ["Title is required"],
            "stage": "validation",
        }
    ]
    assert db_session.query(models.Property).count() == 2

    status = client.get(f"/api/properties/import/{body['import_id']}", headers=headers("agent"))
    assert status.status_code == 200
    assert status.json()["status"] == "completed"
    assert status.json()["new_properties"] == 2


def test_preparsed_rows_import(client, headers):
    rows = [{"Name": "Loft", "Cost": 120000}, {"Name": "Cottage", "Cost": None}]

    r = client.post(
        "/api/properties/import",
        json={"csv_data": rows, "column_mapping": {"title": "Name", "price": "Cost"}},
        headers=headers("admin"),
    )

    assert r.status_code == 200
    body = r.json()
    assert (body["success"], body["failed"]) == (1, 1)
    assert body["error_details"][0]["errors"] == ["Price is required"]


def test_import_without_mapping_is_rejected(client, headers):
    r = client.post(
        "/api/properties/import",
        json={"csv_data": CSV_TEXT, "column_mapping": {}, "import_type": "csv_text"},
        headers=headers("agent"),
    )

    assert r.status_code == 400
    assert r.json()["error"] == "CSV data and column mapping are required"


def test_malformed_csv_text_is_a_parse_error(client, headers):
    r = client.post(
        "/api/properties/import",
        json={"csv_data": "title,price", "column_mapping": MAPPING, "import_type": "csv_text"},
        headers=headers("agent"),
    )

    assert r.status_code == 400
    assert r.json()["code"] == "parse_error"
    assert r.json()["error"] == "CSV must contain headers and at least one data row"


def test_row_limit_is_enforced(client, headers, monkeypatch):
    monkeypatch.setattr(settings, "import_max_rows", 2)

    r = client.post(
        "/api/properties/import",
        json={"csv_data": CSV_TEXT, "column_mapping": MAPPING, "import_type": "csv_text"},
        headers=headers("agent"),
    )

    assert r.status_code == 413


def test_mismatched_payload_shape_is_a_validation_error(client, headers):
    r = client.post(
        "/api/properties/import",
        json={"csv_data": [{"title": "x"}], "column_mapping": MAPPING, "import_type": "csv_text"},
        headers=headers("agent"),
    )

    assert r.status_code == 422
    assert r.json()["code"] == "validation_error"


def test_template_and_suggested_mapping(client, headers):
    template = client.get("/api/properties/import", headers=headers("agent"))
    assert template.status_code == 200
    fields = {f["id"]: f for f in template.json()["supported_fields"]}
    assert fields["title"]["required"] is True
    assert fields["energy_class_id"]["name"] == "Energy Class ID"

    suggested = client.post(
        "/api/properties/import/suggest-mapping",
        json={"headers": ["Property Name", "Price", "Bedrooms"]},
        headers=headers("agent"),
    )
    assert suggested.status_code == 200
    mapping = suggested.json()["mapping"]
    assert mapping["title"] == "Property Name"
    assert mapping["rooms"] == "Bedrooms"


def test_upload_xlsx_with_explicit_mapping(client, headers, db_session):
    wb = Workbook()
    ws = wb.active
    ws.append(["Name", "Amount"])
    ws.append(["Penthouse", 990000])
    buf = io.BytesIO()
    wb.save(buf)

    r = client.post(
        "/api/properties/import/upload",
        files={"file": ("listings.xlsx", buf.getvalue(), "application/octet-stream")},
        data={"column_mapping": json.dumps({"title": "Name", "price": "Amount"}), "policy": "all_or_nothing"},
        headers=headers("agent"),
    )

    assert r.status_code == 200, r.text
    body = r.json()
    assert (body["success"], body["failed"], body["policy"]) == (1, 0, "all_or_nothing")
    assert db_session.query(models.Property).one().title == "Penthouse"


def test_upload_csv_uses_suggested_mapping_when_none_given(client, headers):
    r = client.post(
        "/api/properties/import/upload",
        files={"file": ("listings.csv", b"Title,Price\nStudio,80000\n", "text/csv")},
        headers=headers("agent"),
    )

    assert r.status_code == 200
    assert r.json()["success"] == 1


def test_upload_rejects_unsupported_file(client, headers):
    r = client.post(
        "/api/properties/import/upload",
        files={"file": ("listings.pdf", b"%PDF-1.4", "application/pdf")},
        headers=headers("agent"),
    )

    assert r.status_code == 400
    assert r.json()["code"] == "parse_error"


def test_unknown_import_id_is_404(client, headers):
    r = client.get("/api/properties/import/00000000-0000-0000-0000-000000000000", headers=headers("agent"))

    assert r.status_code == 404
    assert r.json()["error"] == "Import not found"
