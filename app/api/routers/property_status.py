from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_capability
from app.core.auth import Principal
from app.db import models
from app.schemas.properties import PropertyStatusChangeOut, PropertyStatusIn, PropertyStatusOut
from app.services.properties import get_property, set_property_status

router = APIRouter(prefix="/properties", tags=["properties"])


@router.get("/{property_id}/status", response_model=PropertyStatusOut)
def get_property_status(
    property_id: UUID,
    _: Annotated[Principal, Depends(require_capability("properties:read"))],
    db: Annotated[Session, Depends(get_db)],
):
    prop = get_property(db, property_id)
    return PropertyStatusOut(
        property_id=prop.id,
        ilist_id=prop.ilist_id,
        status_id=prop.status_id,
        status_label="Active" if prop.status_id == models.PropertyStatus.active.value else "Inactive",
        last_updated=prop.updated_at,
        last_synced=prop.last_ilist_sync,
    )


@router.put("/{property_id}/status", response_model=PropertyStatusChangeOut)
def update_property_status(
    property_id: UUID,
    payload: PropertyStatusIn,
    principal: Annotated[Principal, Depends(require_capability("properties:status"))],
    db: Annotated[Session, Depends(get_db)],
):
    change = set_property_status(
        db, property_id=property_id, status_id=payload.status_id, triggered_by=principal.user_id
    )
    action = "activated" if change.new_status == models.PropertyStatus.active.value else "deactivated"
    return PropertyStatusChangeOut(
        property_id=change.property.id,
        ilist_id=change.property.ilist_id,
        old_status=change.old_status,
        new_status=change.new_status,
        sync_session_id=change.session.id,
        message=f"Property {action} successfully",
    )
