from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class WebhookChanges(BaseModel):
    old_status: Literal[1, 2] | None = None
    new_status: Literal[1, 2] | None = None
    fields_changed: list[str] | None = None


class IListWebhookPayload(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "event": "property.status_changed",
                "property_id": 184233,
                "timestamp": "2026-03-02T10:15:00Z",
                "changes": {"old_status": 1, "new_status": 2},
            }
        }
    )

    event: str
    property_id: int
    timestamp: datetime | None = None
    data: dict[str, Any] | None = None
    changes: WebhookChanges | None = None


class WebhookResultOut(BaseModel):
    success: bool = True
    event: str
    timestamp: datetime
    result: dict[str, Any]


class WebhookChallengeOut(BaseModel):
    challenge: str


class WebhookStatusOut(BaseModel):
    status: str
    timestamp: datetime
