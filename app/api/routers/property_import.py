from __future__ import annotations

import json
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_capability
from app.core.auth import Principal
from app.core.config import ImportFailurePolicy, settings
from app.core.logging import get_logger
from app.schemas.imports import (
    ImportFieldOut,
    ImportSessionOut,
    ImportTemplateOut,
    PropertyImportIn,
    PropertyImportOut,
    SuggestMappingIn,
    SuggestMappingOut,
)
from app.services.import_mapping import CSV_TEMPLATE, IMPORT_FIELDS, clean_mapping, suggest_mapping
from app.services.property_import import ImportResult, PropertyImportService
from app.services.tabular import parse_csv_text, parse_upload

logger = get_logger(__name__)
router = APIRouter(prefix="/properties/import", tags=["property-import"])

CanImport = Annotated[Principal, Depends(require_capability("properties:import"))]


def get_import_service() -> PropertyImportService:
    return PropertyImportService.from_settings(settings)


def _check_row_limit(row_count: int) -> None:
    if row_count > settings.import_max_rows:
        raise HTTPException(
            status_code=413,
            detail=f"Import has {row_count} rows; the limit is {settings.import_max_rows}",
        )


def _require_mapping(mapping: dict[str, str | None]) -> dict[str, str]:
    cleaned = clean_mapping(mapping)
    if not cleaned:
        raise HTTPException(status_code=400, detail="CSV data and column mapping are required")
    return cleaned


def _import_out(result: ImportResult) -> PropertyImportOut:
    return PropertyImportOut(
        message=f"Import completed: {result.success} successful, {result.failed} failed",
        total=result.total,
        success=result.success,
        failed=result.failed,
        import_id=result.import_id,
        policy=result.policy,
        error_details=[e.__dict__ for e in result.error_details],
        warnings=[w.__dict__ for w in result.warnings],
    )


@router.get("", response_model=ImportTemplateOut)
def import_template(_: CanImport):
    return ImportTemplateOut(
        supported_fields=[ImportFieldOut(id=f.id, name=f.name, required=f.required) for f in IMPORT_FIELDS],
        csv_template=CSV_TEMPLATE,
        default_policy=settings.import_failure_policy,
        max_rows=settings.import_max_rows,
    )


@router.post("", response_model=PropertyImportOut)
def submit_import(
    payload: PropertyImportIn,
    principal: CanImport,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PropertyImportService, Depends(get_import_service)],
):
    mapping = _require_mapping(payload.column_mapping)
    if isinstance(payload.csv_data, str):
        rows = parse_csv_text(payload.csv_data).rows
    else:
        rows = payload.normalized_rows()
    _check_row_limit(len(rows))

    result = service.run_import(
        db,
        rows=rows,
        mapping=mapping,
        policy=payload.policy,
        triggered_by=principal.user_id,
    )
    return _import_out(result)


@router.post("/upload", response_model=PropertyImportOut)
def upload_import(
    principal: CanImport,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PropertyImportService, Depends(get_import_service)],
    file: Annotated[UploadFile, File()],
    column_mapping: Annotated[str | None, Form()] = None,
    policy: Annotated[ImportFailurePolicy | None, Form()] = None,
):
    table = parse_upload(file.filename, file.file.read())
    _check_row_limit(len(table.rows))

    if column_mapping:
        try:
            raw_mapping = json.loads(column_mapping)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="column_mapping must be a JSON object") from exc
        if not isinstance(raw_mapping, dict):
            raise HTTPException(status_code=400, detail="column_mapping must be a JSON object")
        mapping = _require_mapping(raw_mapping)
    else:
        mapping = suggest_mapping(table.headers)
        logger.info(
            "import.mapping.suggested",
            extra={"filename": file.filename, "mapped_fields": sorted(mapping)},
        )

    result = service.run_import(
        db,
        rows=table.rows,
        mapping=mapping,
        policy=policy,
        triggered_by=principal.user_id,
    )
    return _import_out(result)


@router.post("/suggest-mapping", response_model=SuggestMappingOut)
def suggest_import_mapping(payload: SuggestMappingIn, _: CanImport):
    return SuggestMappingOut(mapping=suggest_mapping(payload.headers))


@router.get("/{import_id}", response_model=ImportSessionOut)
def get_import(
    import_id: UUID,
    _: CanImport,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PropertyImportService, Depends(get_import_service)],
):
    return service.get_import(db, import_id=import_id)
