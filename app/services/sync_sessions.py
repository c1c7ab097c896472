from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.db import models


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def open_session(
    db: Session,
    *,
    sync_type: models.SyncType,
    total: int = 0,
    include_deleted: bool = False,
    update_date_from_utc: datetime | None = None,
    triggered_by: str | None = None,
) -> models.SyncSession:
    session = models.SyncSession(
        sync_type=sync_type.value,
        status=models.SyncStatus.syncing.value,
        total_properties=total,
        include_deleted=include_deleted,
        update_date_from_utc=update_date_from_utc,
        triggered_by=triggered_by,
        api_responses=[],
        started_at=datetime.now(UTC),
    )
    db.add(session)
    db.flush()
    return session


def finalize_session(
    db: Session,
    session: models.SyncSession,
    *,
    status: models.SyncStatus,
    total: int | None = None,
    new: int | None = None,
    updated: int | None = None,
    deleted: int | None = None,
    skipped: int | None = None,
    failed: int | None = None,
    error_message: str | None = None,
    error_details: dict[str, Any] | None = None,
    api_responses: list[dict[str, Any]] | None = None,
) -> models.SyncSession:
    completed_at = datetime.now(UTC)
    started_at = as_utc(session.started_at) or completed_at

    session.status = status.value
    if total is not None:
        session.total_properties = total
    if new is not None:
        session.new_properties = new
    if updated is not None:
        session.updated_properties = updated
    if deleted is not None:
        session.deleted_properties = deleted
    if skipped is not None:
        session.skipped_properties = skipped
    if failed is not None:
        session.failed_properties = failed
    session.error_message = error_message
    session.error_details = error_details
    if api_responses is not None:
        # JSON columns are not mutation-tracked; always assign a new list.
        session.api_responses = list(api_responses)
    session.completed_at = completed_at
    session.duration_seconds = max(int((completed_at - started_at).total_seconds()), 0)

    db.add(session)
    db.flush()
    return session


def record_completed_session(
    db: Session,
    *,
    sync_type: models.SyncType,
    api_responses: list[dict[str, Any]],
    total: int = 1,
    new: int = 0,
    updated: int = 0,
    deleted: int = 0,
    triggered_by: str | None = None,
) -> models.SyncSession:
    session = open_session(db, sync_type=sync_type, total=total, triggered_by=triggered_by)
    return finalize_session(
        db,
        session,
        status=models.SyncStatus.completed,
        new=new,
        updated=updated,
        deleted=deleted,
        api_responses=api_responses,
    )


def record_failed_session(
    db: Session,
    *,
    sync_type: models.SyncType,
    error_message: str,
    api_responses: list[dict[str, Any]] | None = None,
    triggered_by: str | None = None,
) -> models.SyncSession:
    session = open_session(db, sync_type=sync_type, total=1, triggered_by=triggered_by)
    return finalize_session(
        db,
        session,
        status=models.SyncStatus.failed,
        failed=1,
        error_message=error_message,
        api_responses=api_responses or [],
    )


def get_session(
    db: Session, session_id: UUID, *, sync_type: models.SyncType | None = None
) -> models.SyncSession | None:
    query = db.query(models.SyncSession).filter(models.SyncSession.id == session_id)
    if sync_type is not None:
        query = query.filter(models.SyncSession.sync_type == sync_type.value)
    return query.one_or_none()


def latest_session(
    db: Session,
    *,
    sync_types: tuple[models.SyncType, ...] | None = None,
    status: models.SyncStatus | None = None,
) -> models.SyncSession | None:
    query = db.query(models.SyncSession)
    if sync_types:
        query = query.filter(models.SyncSession.sync_type.in_([t.value for t in sync_types]))
    if status is not None:
        query = query.filter(models.SyncSession.status == status.value)
        if status == models.SyncStatus.completed:
            return query.order_by(models.SyncSession.completed_at.desc()).first()
    return query.order_by(models.SyncSession.started_at.desc()).first()
