from __future__ import annotations

from typing import Any

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.logging import get_logger
from app.db.base import SessionLocal
from app.services.ilist_sync import IListSyncService, SyncOptions

logger = get_logger(__name__)


@celery_app.task(name="app.tasks.scheduled_ilist_sync")
def scheduled_ilist_sync_task(sync_type: str = "incremental") -> dict[str, Any]:
    if not settings.ilist_sync_enabled:
        return {"disabled": True}

    db = SessionLocal()
    service = IListSyncService()
    try:
        last_sync_date = service.resolve_last_sync_date(db) if sync_type == "incremental" else None
        result = service.perform_sync(
            db,
            SyncOptions(
                sync_type=sync_type,
                include_deleted=settings.ilist_sync_include_deleted,
                last_sync_date=last_sync_date,
                batch_size=settings.ilist_default_batch_size,
                triggered_by="scheduler",
            ),
        )
        db.commit()
        return result.as_dict()
    except Exception:
        logger.exception(
            "tasks.scheduled_ilist_sync.failed",
            extra={
                "task_name": "scheduled_ilist_sync_task",
                "sync_type": sync_type,
                "include_deleted": settings.ilist_sync_include_deleted,
            },
        )
        db.rollback()
        raise
    finally:
        db.close()


@celery_app.task(name="app.tasks.sync_ilist_lookups")
def sync_ilist_lookups_task(language_id: int | None = None) -> dict[str, int]:
    language_id = language_id or settings.ilist_language_id
    db = SessionLocal()
    try:
        counts = IListSyncService().sync_lookup_data(db, language_id=language_id, triggered_by="scheduler")
        db.commit()
        return counts
    except Exception:
        logger.exception(
            "tasks.sync_ilist_lookups.failed",
            extra={"task_name": "sync_ilist_lookups_task", "language_id": language_id},
        )
        db.rollback()
        raise
    finally:
        db.close()
