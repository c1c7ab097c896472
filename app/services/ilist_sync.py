from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger, redact_sensitive_data
from app.core.metrics import record_sync_record_outcome, record_sync_run
from app.core.request_context import bind_sync_session, unbind_sync_session
from app.db import models
from app.providers.base import ProviderError, ProviderRequestLog, ProviderRequestLogger
from app.providers.ilist import GREEK_LANGUAGE_ID, IListClient
from app.services.ilist_config import IListConfigService, ResolvedIListConfig
from app.services.properties import (
    get_property_by_ilist_id,
    parse_ilist_datetime,
    upsert_property_from_ilist,
)
from app.services.sync_sessions import (
    as_utc,
    finalize_session,
    latest_session,
    open_session,
    record_completed_session,
)

logger = get_logger(__name__)

SyncMode = Literal["full", "incremental"]
ClientFactory = Callable[[ResolvedIListConfig, ProviderRequestLogger | None], IListClient]


class SyncAbortedError(Exception):
    """The run could not fetch from iList; its session was finalized as failed."""

    def __init__(self, message: str, *, session_id: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.session_id = session_id
        self.details = details or {}


@dataclass(frozen=True)
class SyncOptions:
    sync_type: SyncMode = "incremental"
    include_deleted: bool = False
    last_sync_date: datetime | None = None
    batch_size: int = 10
    auth_token: str | None = None
    triggered_by: str | None = None


@dataclass
class SyncStats:
    total: int = 0
    new: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class SyncResult:
    success: bool
    session_id: str
    status: str
    sync_type: SyncMode
    full_fetch: bool
    duration_seconds: int
    stats: SyncStats = field(default_factory=SyncStats)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _default_client_factory(
    resolved: ResolvedIListConfig, request_logger: ProviderRequestLogger | None
) -> IListClient:
    return IListClient.from_settings(
        settings,
        auth_token=resolved.auth_token,
        base_url=resolved.base_url,
        rate_limit_per_minute=resolved.rate_limit_per_minute,
        request_logger=request_logger,
    )


class IListSyncService:
    def __init__(
        self,
        *,
        config_service: IListConfigService | None = None,
        client_factory: ClientFactory = _default_client_factory,
    ) -> None:
        self.config_service = config_service or IListConfigService()
        self._client_factory = client_factory

    def _client(
        self,
        db: Session,
        *,
        auth_token: str | None = None,
        request_logger: ProviderRequestLogger | None = None,
    ) -> IListClient:
        resolved = self.config_service.resolve(db, override_token=auth_token)
        return self._client_factory(resolved, request_logger)

    # -------------------------
    # Full / incremental runs
    # -------------------------

    def resolve_last_sync_date(self, db: Session) -> datetime | None:
        session = latest_session(
            db,
            sync_types=(models.SyncType.full, models.SyncType.incremental),
            status=models.SyncStatus.completed,
        )
        return as_utc(session.completed_at) if session else None

    def perform_sync(self, db: Session, options: SyncOptions) -> SyncResult:
        """
        Pull properties from iList and upsert them.

        Connection and fetch failures abort the run (``SyncAbortedError``);
        a failing record is rolled back to its savepoint, counted and skipped.
        """
        api_responses: list[dict[str, Any]] = []

        def _log_call(req: ProviderRequestLog) -> None:
            api_responses.append(
                {
                    "action": "request",
                    "endpoint": req.endpoint,
                    "method": req.method,
                    "status_code": req.status_code,
                    "duration_ms": req.duration_ms,
                    "error": req.error,
                }
            )

        client = self._client(db, auth_token=options.auth_token, request_logger=_log_call)

        since = options.last_sync_date if options.sync_type == "incremental" else None
        batch_size = max(options.batch_size, 1)
        full_fetch = since is None

        session = open_session(
            db,
            sync_type=models.SyncType(options.sync_type),
            include_deleted=options.include_deleted,
            update_date_from_utc=since,
            triggered_by=options.triggered_by,
        )
        session_id = str(session.id)
        ctx_token = bind_sync_session(session_id)
        started = time.perf_counter()
        stats = SyncStats()
        errors: list[str] = []

        logger.info(
            "ilist.sync.started",
            extra={
                "sync_session_id": session_id,
                "sync_type": options.sync_type,
                "full_fetch": full_fetch,
                "include_deleted": options.include_deleted,
                "batch_size": batch_size,
            },
        )
        if options.sync_type == "incremental" and full_fetch:
            logger.info("ilist.sync.incremental_without_history", extra={"sync_session_id": session_id})

        try:
            if not client.test_connection():
                raise SyncAbortedError("Failed to connect to iList API", session_id=session_id)

            pages = (
                client.full_sync(page_size=batch_size)
                if since is None
                else client.incremental_sync(since, page_size=batch_size)
            )
            try:
                self._consume_pages(db, pages, stats, errors, api_responses, deleted=False)
            except ProviderError as exc:
                raise SyncAbortedError(
                    f"Failed to fetch properties from iList: {exc}",
                    session_id=session_id,
                    details=exc.as_details(),
                ) from exc

            if options.include_deleted:
                try:
                    self._consume_pages(
                        db,
                        client.deleted_properties(since, page_size=batch_size),
                        stats,
                        errors,
                        api_responses,
                        deleted=True,
                    )
                except ProviderError as exc:
                    message = f"Deleted properties sync: {exc}"
                    errors.append(message)
                    logger.warning(
                        "ilist.sync.deleted_fetch_failed",
                        extra={"sync_session_id": session_id, "error": str(exc), "status_code": exc.status_code},
                    )

        except SyncAbortedError as exc:
            duration = time.perf_counter() - started
            safe_error = str(redact_sensitive_data(str(exc)))
            finalize_session(
                db,
                session,
                status=models.SyncStatus.failed,
                total=stats.total,
                new=stats.new,
                updated=stats.updated,
                deleted=stats.deleted,
                skipped=stats.skipped,
                failed=stats.failed,
                error_message=safe_error,
                error_details={"error": safe_error, **exc.details},
                api_responses=api_responses,
            )
            # The caller's transaction rolls back on error; keep the failed session on record.
            db.commit()
            record_sync_run(sync_type=options.sync_type, status="failed", duration_seconds=duration)
            logger.error(
                "ilist.sync.aborted",
                extra={"sync_session_id": session_id, "sync_type": options.sync_type, "error": safe_error},
            )
            raise
        except Exception as exc:
            duration = time.perf_counter() - started
            safe_error = str(redact_sensitive_data(str(exc)))
            logger.exception(
                "ilist.sync.failed",
                extra={"sync_session_id": session_id, "sync_type": options.sync_type, "error": safe_error},
            )
            # The in-flight session row goes away with the rollback; record the failure afresh.
            db.rollback()
            failed_session = open_session(
                db,
                sync_type=models.SyncType(options.sync_type),
                include_deleted=options.include_deleted,
                update_date_from_utc=since,
                triggered_by=options.triggered_by,
            )
            finalize_session(
                db,
                failed_session,
                status=models.SyncStatus.failed,
                total=stats.total,
                failed=stats.total,
                error_message=safe_error,
                error_details={"error": safe_error, "error_type": exc.__class__.__name__},
                api_responses=api_responses,
            )
            db.commit()
            record_sync_run(sync_type=options.sync_type, status="failed", duration_seconds=duration)
            raise
        finally:
            unbind_sync_session(ctx_token)

        status = (
            models.SyncStatus.failed
            if errors and stats.new == 0 and stats.updated == 0
            else models.SyncStatus.completed
        )
        safe_errors = [str(redact_sensitive_data(e)) for e in errors]
        api_responses.append({"action": "summary", **asdict(stats)})
        finalize_session(
            db,
            session,
            status=status,
            total=stats.total,
            new=stats.new,
            updated=stats.updated,
            deleted=stats.deleted,
            skipped=stats.skipped,
            failed=stats.failed,
            error_message="; ".join(safe_errors) if safe_errors else None,
            error_details={"errors": safe_errors} if safe_errors else None,
            api_responses=api_responses,
        )
        duration = time.perf_counter() - started
        record_sync_run(sync_type=options.sync_type, status=status.value, duration_seconds=duration)

        logger.info(
            "ilist.sync.completed",
            extra={
                "sync_session_id": session_id,
                "sync_type": options.sync_type,
                "status": status.value,
                **asdict(stats),
                "errors_count": len(errors),
            },
        )
        return SyncResult(
            success=status == models.SyncStatus.completed,
            session_id=session_id,
            status=status.value,
            sync_type=options.sync_type,
            full_fetch=full_fetch,
            duration_seconds=session.duration_seconds or 0,
            stats=stats,
            errors=safe_errors,
        )

    def _consume_pages(
        self,
        db: Session,
        pages: Iterator[list[dict[str, Any]]],
        stats: SyncStats,
        errors: list[str],
        api_responses: list[dict[str, Any]],
        *,
        deleted: bool,
    ) -> None:
        for page in pages:
            for raw in page:
                if not deleted:
                    stats.total += 1
                outcome, error, ilist_id = self._sync_record(db, raw, deleted=deleted)
                record_sync_record_outcome(outcome=outcome)
                if outcome == "new":
                    stats.new += 1
                elif outcome == "updated":
                    stats.updated += 1
                elif outcome == "deleted":
                    stats.deleted += 1
                elif outcome == "skipped":
                    stats.skipped += 1
                else:
                    stats.failed += 1
                    errors.append(error or "Unknown error")
                    api_responses.append(
                        {"action": "record_failed", "ilist_id": ilist_id, "deleted": deleted, "error": error}
                    )

    def _sync_record(self, db: Session, raw: Any, *, deleted: bool) -> tuple[str, str | None, Any]:
        raw_id = raw.get("Id") if isinstance(raw, dict) else None
        label = "Deleted property" if deleted else "Property"
        try:
            with db.begin_nested():
                if not isinstance(raw, dict):
                    raise ValueError("record is not an object")
                if deleted:
                    upsert_property_from_ilist(
                        db, {**raw, "StatusID": models.PropertyStatus.inactive.value}
                    )
                    return "deleted", None, raw_id

                existing = get_property_by_ilist_id(db, int(raw_id))
                if existing is not None and not self._is_remote_newer(raw, existing):
                    return "skipped", None, raw_id

                _, created = upsert_property_from_ilist(db, raw)
                return ("new" if created else "updated"), None, raw_id
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            message = f"{label} {raw_id}: {getattr(exc, 'orig', None) or exc}"
            logger.warning(
                "ilist.sync.record.failed",
                extra={"ilist_id": raw_id, "deleted": deleted, "error": str(exc)},
            )
            return "failed", message, raw_id

    @staticmethod
    def _is_remote_newer(raw: dict[str, Any], existing: models.Property) -> bool:
        remote = parse_ilist_datetime(raw.get("UpdateDate"))
        stored = as_utc(existing.update_date)
        if remote is None or stored is None:
            return True
        return remote > stored

    # -------------------------
    # Single records, lookups, stats
    # -------------------------

    def sync_single_property(
        self, db: Session, *, ilist_id: int, auth_token: str | None = None
    ) -> tuple[models.Property, bool]:
        client = self._client(db, auth_token=auth_token)
        payload = client.fetch_property_by_id(ilist_id)
        if payload is None:
            raise HTTPException(status_code=404, detail=f"Property {ilist_id} not found in iList")
        prop, created = upsert_property_from_ilist(db, payload)
        logger.info("ilist.property.synced", extra={"ilist_id": ilist_id, "created": created})
        return prop, created

    def sync_lookup_data(
        self,
        db: Session,
        *,
        language_id: int = GREEK_LANGUAGE_ID,
        auth_token: str | None = None,
        triggered_by: str | None = None,
    ) -> dict[str, int]:
        """Refresh the cached lookup tables; returns rows stored per lookup type."""
        client = self._client(db, auth_token=auth_token)
        lookups = client.fetch_all_lookups(language_id=language_id)
        now = datetime.now(UTC)

        counts: dict[str, int] = {}
        for lookup_type, entries in lookups.items():
            stored = 0
            for entry in entries:
                try:
                    lookup_id = int(entry.get("Id"))
                except (TypeError, ValueError):
                    logger.warning("ilist.lookups.entry_invalid", extra={"lookup_type": lookup_type})
                    continue

                row = (
                    db.query(models.IListLookup)
                    .filter(models.IListLookup.lookup_type == lookup_type)
                    .filter(models.IListLookup.lookup_id == lookup_id)
                    .filter(models.IListLookup.language_id == language_id)
                    .one_or_none()
                )
                if row is None:
                    row = models.IListLookup(lookup_type=lookup_type, lookup_id=lookup_id, language_id=language_id)
                value = entry.get("Value")
                row.value = str(value).strip() if value is not None else None
                row.raw_data = dict(entry)
                row.last_updated = now
                db.add(row)
                stored += 1
            db.flush()
            counts[lookup_type] = stored

        record_completed_session(
            db,
            sync_type=models.SyncType.lookups,
            total=sum(counts.values()),
            updated=sum(counts.values()),
            triggered_by=triggered_by,
            api_responses=[{"action": "lookups", "language_id": language_id, "counts": counts}],
        )
        logger.info(
            "ilist.lookups.synced",
            extra={"language_id": language_id, "lookup_types": len(counts), "rows": sum(counts.values())},
        )
        return counts

    def test_connection(
        self,
        db: Session,
        *,
        auth_token: str,
        base_url: str | None = None,
        save: bool = True,
    ) -> bool:
        resolved = ResolvedIListConfig(
            auth_token=auth_token,
            base_url=base_url or settings.ilist_base_url,
            rate_limit_per_minute=settings.ilist_rate_limit_per_minute,
            source="request",
        )
        connected = self._client_factory(resolved, None).test_connection()
        logger.info("ilist.connection.tested", extra={"connected": connected, "base_url": resolved.base_url})
        if connected and save:
            self.config_service.save_token(db, auth_token=auth_token, base_url=resolved.base_url)
        return connected

    def get_sync_stats(self, db: Session) -> dict[str, Any]:
        latest = latest_session(db, sync_types=(models.SyncType.full, models.SyncType.incremental))
        active_count = (
            db.query(func.count(models.Property.id))
            .filter(models.Property.status_id == models.PropertyStatus.active.value)
            .scalar()
        )
        return {
            "latest_session": latest,
            "total_active_properties": int(active_count or 0),
            "is_healthy": bool(latest and latest.status == models.SyncStatus.completed.value),
        }
