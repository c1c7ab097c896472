from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ScheduledSyncIn(BaseModel):
    sync_type: Literal["full", "incremental"] = "incremental"
    include_deleted: bool = True
    batch_size: int = Field(default=10, ge=1, le=500)


class ManualSyncIn(ScheduledSyncIn):
    include_deleted: bool = False
    # Optional one-off token; otherwise the stored configuration is used.
    auth_token: str | None = Field(default=None, min_length=1)
    last_sync_date: datetime | None = None


class SyncStatsOut(BaseModel):
    total: int
    new: int
    updated: int
    deleted: int
    skipped: int
    failed: int


class SyncResultOut(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "session_id": "1f0f7cb2-5f5d-4b7b-8a3e-2d7d6f0e9a11",
                "status": "completed",
                "sync_type": "incremental",
                "full_fetch": False,
                "duration_seconds": 4,
                "stats": {"total": 12, "new": 2, "updated": 3, "deleted": 1, "skipped": 7, "failed": 0},
                "errors": [],
                "timestamp": "2026-03-02T10:15:00+00:00",
            }
        }
    )

    success: bool
    session_id: str
    status: str
    sync_type: Literal["full", "incremental"]
    full_fetch: bool
    duration_seconds: int
    stats: SyncStatsOut
    errors: list[str]
    timestamp: datetime


class SyncSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sync_type: str
    status: str
    include_deleted: bool
    update_date_from_utc: datetime | None = None
    total_properties: int
    new_properties: int
    updated_properties: int
    deleted_properties: int
    skipped_properties: int
    failed_properties: int
    error_message: str | None = None
    triggered_by: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: int | None = None


class ScheduledSyncConfigOut(BaseModel):
    enabled: bool
    interval_seconds: int
    include_deleted: bool
    default_batch_size: int
    recommended_schedule: str
    last_sync_date: datetime | None = None
    latest_session: SyncSessionOut | None = None


class SyncStatusOut(BaseModel):
    latest_session: SyncSessionOut | None = None
    total_active_properties: int
    is_healthy: bool


class TestConnectionIn(BaseModel):
    auth_token: str = Field(min_length=1)
    base_url: str | None = None
    save: bool = True


class TestConnectionOut(BaseModel):
    success: bool
    connected: bool
    saved: bool
    message: str


class LookupSyncIn(BaseModel):
    language_id: int = Field(default=4, ge=1)


class LookupSyncOut(BaseModel):
    success: bool = True
    language_id: int
    counts: dict[str, int]
    total: int


class WebhookConfigOut(BaseModel):
    webhook_url: str
    events: list[str]
    secret_configured: bool
    headers: dict[str, Any]
    note: str
