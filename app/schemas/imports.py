from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, cast
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.config import ImportFailurePolicy


class PropertyImportIn(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "csv_data": "title,price,sqr_meters\nSea view flat,250000,85",
                "column_mapping": {"title": "title", "price": "price", "sqr_meters": "sqr_meters"},
                "import_type": "csv_text",
                "policy": "best_effort",
            }
        }
    )

    csv_data: str | list[dict[str, Any]]
    column_mapping: dict[str, str | None] = Field(default_factory=dict)
    import_type: Literal["csv_text", "rows"] = "rows"
    policy: ImportFailurePolicy | None = None

    @model_validator(mode="after")
    def _check_payload_shape(self) -> PropertyImportIn:
        if self.import_type == "csv_text" and not isinstance(self.csv_data, str):
            raise ValueError("csv_text imports expect csv_data to be a string")
        if self.import_type == "rows" and not isinstance(self.csv_data, list):
            raise ValueError("rows imports expect csv_data to be a list of objects")
        return self

    def normalized_rows(self) -> list[dict[str, str]]:
        """Pre-parsed rows with every value coerced to a string."""
        rows = cast(list[dict[str, Any]], self.csv_data)
        return [{str(k): "" if v is None else str(v).strip() for k, v in row.items()} for row in rows]


class ImportErrorOut(BaseModel):
    row: int
    data: dict[str, Any]
    errors: list[str]
    stage: Literal["validation", "persistence"]


class ImportWarningOut(BaseModel):
    row: int
    field: str
    message: str


class PropertyImportOut(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "Import completed: 2 successful, 1 failed",
                "total": 3,
                "success": 2,
                "failed": 1,
                "import_id": "0b6f52a4-0a8e-4f6e-9d0f-9b8a3d2c1e10",
                "policy": "best_effort",
                "error_details": [
                    {"row": 2, "data": {"title": "", "price": "100"}, "errors": ["Title is required"], "stage": "validation"}
                ],
                "warnings": [],
            }
        }
    )

    message: str
    total: int
    success: int
    failed: int
    import_id: str
    policy: ImportFailurePolicy
    error_details: list[ImportErrorOut]
    warnings: list[ImportWarningOut]


class ImportFieldOut(BaseModel):
    id: str
    name: str
    required: bool


class ImportTemplateOut(BaseModel):
    supported_fields: list[ImportFieldOut]
    csv_template: str
    default_policy: ImportFailurePolicy
    max_rows: int


class SuggestMappingIn(BaseModel):
    headers: list[str] = Field(min_length=1)


class SuggestMappingOut(BaseModel):
    mapping: dict[str, str]


class ImportSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    total_properties: int
    new_properties: int
    updated_properties: int
    failed_properties: int
    error_details: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: int | None = None
