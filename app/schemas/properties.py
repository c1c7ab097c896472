from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class PropertyStatusIn(BaseModel):
    status_id: Literal[1, 2]


class PropertyStatusOut(BaseModel):
    success: bool = True
    property_id: UUID
    ilist_id: int
    status_id: int
    status_label: Literal["Active", "Inactive"]
    last_updated: datetime | None = None
    last_synced: datetime | None = None


class PropertyStatusChangeOut(BaseModel):
    success: bool = True
    property_id: UUID
    ilist_id: int
    old_status: int
    new_status: int
    sync_session_id: UUID
    message: str
