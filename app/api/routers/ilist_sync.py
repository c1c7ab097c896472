from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_capability, require_cron_secret
from app.core.auth import Principal
from app.core.config import settings
from app.schemas.sync import (
    LookupSyncIn,
    LookupSyncOut,
    ManualSyncIn,
    ScheduledSyncConfigOut,
    ScheduledSyncIn,
    SyncResultOut,
    SyncStatusOut,
    TestConnectionIn,
    TestConnectionOut,
    WebhookConfigOut,
)
from app.services.ilist_sync import IListSyncService, SyncOptions, SyncResult
from app.services.webhooks import WEBHOOK_EVENTS, webhook_url

router = APIRouter(prefix="/ilist", tags=["ilist"])

CanSync = Annotated[Principal, Depends(require_capability("ilist:sync"))]
CanConfigure = Annotated[Principal, Depends(require_capability("ilist:configure"))]


def get_sync_service() -> IListSyncService:
    return IListSyncService()


SyncService = Annotated[IListSyncService, Depends(get_sync_service)]
DB = Annotated[Session, Depends(get_db)]


def _sync_out(result: SyncResult) -> SyncResultOut:
    return SyncResultOut(**result.as_dict(), timestamp=datetime.now(UTC))


@router.post("/scheduled-sync", response_model=SyncResultOut, dependencies=[Depends(require_cron_secret)])
def scheduled_sync(
    db: DB,
    service: SyncService,
    payload: Annotated[ScheduledSyncIn | None, Body()] = None,
):
    payload = payload or ScheduledSyncIn()
    last_sync_date = service.resolve_last_sync_date(db) if payload.sync_type == "incremental" else None
    result = service.perform_sync(
        db,
        SyncOptions(
            sync_type=payload.sync_type,
            include_deleted=payload.include_deleted,
            last_sync_date=last_sync_date,
            batch_size=payload.batch_size,
            triggered_by="cron",
        ),
    )
    return _sync_out(result)


@router.get("/scheduled-sync", response_model=ScheduledSyncConfigOut)
def scheduled_sync_config(_: CanSync, db: DB, service: SyncService):
    stats = service.get_sync_stats(db)
    return ScheduledSyncConfigOut(
        enabled=settings.ilist_sync_enabled,
        interval_seconds=settings.ilist_sync_interval_seconds,
        include_deleted=settings.ilist_sync_include_deleted,
        default_batch_size=settings.ilist_default_batch_size,
        recommended_schedule="*/15 * * * *",
        last_sync_date=service.resolve_last_sync_date(db),
        latest_session=stats["latest_session"],
    )


@router.post("/sync", response_model=SyncResultOut)
def manual_sync(principal: CanSync, db: DB, service: SyncService, payload: ManualSyncIn):
    last_sync_date = None
    if payload.sync_type == "incremental":
        last_sync_date = payload.last_sync_date or service.resolve_last_sync_date(db)
    result = service.perform_sync(
        db,
        SyncOptions(
            sync_type=payload.sync_type,
            include_deleted=payload.include_deleted,
            last_sync_date=last_sync_date,
            batch_size=payload.batch_size,
            auth_token=payload.auth_token,
            triggered_by=principal.user_id,
        ),
    )
    return _sync_out(result)


@router.get("/sync", response_model=SyncStatusOut)
def sync_status(_: CanSync, db: DB, service: SyncService):
    return service.get_sync_stats(db)


@router.post("/properties/{ilist_id}/sync")
def sync_single_property(ilist_id: int, _: CanSync, db: DB, service: SyncService):
    prop, created = service.sync_single_property(db, ilist_id=ilist_id)
    return {"success": True, "property_id": str(prop.id), "ilist_id": prop.ilist_id, "created": created}


@router.post("/test-connection", response_model=TestConnectionOut)
def test_connection(payload: TestConnectionIn, _: CanConfigure, db: DB, service: SyncService):
    connected = service.test_connection(
        db, auth_token=payload.auth_token, base_url=payload.base_url, save=payload.save
    )
    saved = connected and payload.save
    if connected:
        message = "Connection successful" + (" and configuration saved" if saved else "")
    else:
        message = "Failed to connect to iList API"
    return TestConnectionOut(success=connected, connected=connected, saved=saved, message=message)


@router.post("/lookups/sync", response_model=LookupSyncOut)
def sync_lookups(principal: CanConfigure, db: DB, service: SyncService, payload: LookupSyncIn | None = None):
    payload = payload or LookupSyncIn()
    counts = service.sync_lookup_data(db, language_id=payload.language_id, triggered_by=principal.user_id)
    return LookupSyncOut(language_id=payload.language_id, counts=counts, total=sum(counts.values()))


@router.get("/webhook-config", response_model=WebhookConfigOut)
def webhook_config(_: CanConfigure):
    return WebhookConfigOut(
        webhook_url=webhook_url(),
        events=list(WEBHOOK_EVENTS),
        secret_configured=bool(settings.webhook_secret),
        headers={"Content-Type": "application/json", "x-webhook-secret": "<WEBHOOK_SECRET>"},
        note="Register this URL in the iList CRM and send the shared secret in the x-webhook-secret header.",
    )
