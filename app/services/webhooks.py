from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger, redact_sensitive_data
from app.db import models
from app.schemas.webhooks import IListWebhookPayload
from app.services.ilist_sync import IListSyncService
from app.services.properties import (
    change_property_status,
    get_property_by_ilist_id,
    upsert_property_from_ilist,
)
from app.services.sync_sessions import record_completed_session, record_failed_session

logger = get_logger(__name__)

WEBHOOK_EVENTS: tuple[str, ...] = (
    "property.created",
    "property.updated",
    "property.deleted",
    "property.status_changed",
)
WEBHOOK_PATH = "/api/webhooks/ilist"


def webhook_url(base_url: str | None = None) -> str:
    return f"{(base_url or settings.public_base_url).rstrip('/')}{WEBHOOK_PATH}"


class IListWebhookService:
    def __init__(self, *, sync_service: IListSyncService | None = None) -> None:
        self._sync_service = sync_service or IListSyncService()

    def handle_event(self, db: Session, payload: IListWebhookPayload) -> dict[str, Any]:
        if payload.event not in WEBHOOK_EVENTS:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {payload.event}")

        logger.info("webhook.received", extra={"event": payload.event, "ilist_id": payload.property_id})
        try:
            result = self._dispatch(db, payload)
        except Exception as exc:
            safe_error = str(redact_sensitive_data(str(getattr(exc, "detail", None) or exc)))
            logger.exception(
                "webhook.failed",
                extra={"event": payload.event, "ilist_id": payload.property_id, "error": safe_error},
            )
            db.rollback()
            record_failed_session(
                db,
                sync_type=models.SyncType.webhook,
                error_message=safe_error,
                api_responses=[{"webhook_payload": payload.model_dump(mode="json")}],
                triggered_by="webhook",
            )
            # The request rolls back on error; keep the failed session on record.
            db.commit()
            raise

        logger.info("webhook.processed", extra={"event": payload.event, "ilist_id": payload.property_id, **result})
        return result

    def _dispatch(self, db: Session, payload: IListWebhookPayload) -> dict[str, Any]:
        event_log = [{"webhook_payload": payload.model_dump(mode="json")}]

        if payload.event in ("property.created", "property.updated"):
            if payload.data:
                prop, created = upsert_property_from_ilist(db, {"Id": payload.property_id, **payload.data})
            else:
                prop, created = self._sync_service.sync_single_property(db, ilist_id=payload.property_id)
            record_completed_session(
                db,
                sync_type=models.SyncType.webhook,
                new=1 if created else 0,
                updated=0 if created else 1,
                triggered_by="webhook",
                api_responses=event_log,
            )
            return {"action": payload.event, "property_id": str(prop.id), "ilist_id": payload.property_id}

        existing = get_property_by_ilist_id(db, payload.property_id)
        if existing is None:
            logger.info(
                "webhook.property_unknown", extra={"event": payload.event, "ilist_id": payload.property_id}
            )
            return {"action": payload.event, "property_id": None, "ilist_id": payload.property_id, "ignored": True}

        if payload.event == "property.deleted":
            change_property_status(existing, models.PropertyStatus.inactive.value)
            db.add(existing)
            db.flush()
            record_completed_session(
                db,
                sync_type=models.SyncType.webhook,
                deleted=1,
                triggered_by="webhook",
                api_responses=event_log,
            )
            return {"action": payload.event, "property_id": str(existing.id), "ilist_id": payload.property_id}

        new_status = payload.changes.new_status if payload.changes else None
        if new_status is None:
            raise HTTPException(status_code=400, detail="status_changed events require changes.new_status")
        old_status = change_property_status(existing, new_status)
        db.add(existing)
        db.flush()
        record_completed_session(
            db,
            sync_type=models.SyncType.webhook,
            updated=1,
            triggered_by="webhook",
            api_responses=event_log,
        )
        return {
            "action": payload.event,
            "property_id": str(existing.id),
            "ilist_id": payload.property_id,
            "old_status": old_status,
            "new_status": new_status,
        }
