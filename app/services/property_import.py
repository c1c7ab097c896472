from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Literal
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import ImportFailurePolicy
from app.core.logging import get_logger, redact_sensitive_data
from app.core.metrics import record_import_rows
from app.core.request_context import bind_sync_session, unbind_sync_session
from app.db import models
from app.services.import_mapping import clean_mapping
from app.services.import_rows import normalize_row
from app.services.properties import record_to_ilist_payload, upsert_property_from_ilist
from app.services.sync_sessions import finalize_session, get_session, open_session

logger = get_logger(__name__)

# Each millisecond owns a block of synthetic ids wider than the largest allowed import.
SYNTHETIC_ID_STRIDE = 1_000_000


@dataclass(frozen=True)
class ImportRowError:
    row: int
    data: dict[str, Any]
    errors: list[str]
    stage: Literal["validation", "persistence"] = "validation"


@dataclass(frozen=True)
class ImportRowWarning:
    row: int
    field: str
    message: str


@dataclass
class ImportResult:
    total: int
    success: int
    failed: int
    import_id: str
    policy: ImportFailurePolicy
    error_details: list[ImportRowError] = field(default_factory=list)
    warnings: list[ImportRowWarning] = field(default_factory=list)
    created: int = 0
    updated: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _persistence_message(exc: Exception) -> str:
    detail = getattr(exc, "orig", None) or exc
    return f"Database insert failed: {redact_sensitive_data(str(detail))}"


class PropertyImportService:
    def __init__(
        self,
        *,
        default_policy: ImportFailurePolicy = "best_effort",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_policy = default_policy
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: Any) -> PropertyImportService:
        return cls(default_policy=cfg.import_failure_policy)

    def run_import(
        self,
        db: Session,
        *,
        rows: list[dict[str, str]],
        mapping: dict[str, str | None],
        policy: ImportFailurePolicy | None = None,
        triggered_by: str | None = None,
    ) -> ImportResult:
        """
        Validate and upsert ``rows`` in order.

        ``best_effort`` persists every valid row in its own savepoint and keeps
        going past failures. ``all_or_nothing`` runs the batch inside one
        savepoint and rolls all of it back when any row fails.
        """
        effective_policy: ImportFailurePolicy = policy or self.default_policy
        cleaned_mapping = clean_mapping(mapping)
        total = len(rows)

        session = open_session(db, sync_type=models.SyncType.csv_import, total=total, triggered_by=triggered_by)
        import_id = str(session.id)
        ctx_token = bind_sync_session(import_id)
        logger.info(
            "import.started",
            extra={"import_id": import_id, "total": total, "policy": effective_policy},
        )

        try:
            result = self._process_rows(
                db,
                rows=rows,
                mapping=cleaned_mapping,
                policy=effective_policy,
                import_id=import_id,
            )
            finalize_session(
                db,
                session,
                status=models.SyncStatus.completed,
                total=total,
                new=result.created,
                updated=result.updated,
                failed=result.failed,
                error_details=self._session_error_details(result),
            )
        except Exception as exc:
            safe_error = str(redact_sensitive_data(str(exc)))
            logger.exception("import.failed", extra={"import_id": import_id, "error": safe_error})
            # The in-flight session row goes away with the rollback; record the failure afresh.
            db.rollback()
            failed_session = open_session(
                db, sync_type=models.SyncType.csv_import, total=total, triggered_by=triggered_by
            )
            finalize_session(
                db,
                failed_session,
                status=models.SyncStatus.failed,
                total=total,
                failed=total,
                error_message=safe_error,
            )
            # The request rolls back on error; keep the failed session on record.
            db.commit()
            raise
        finally:
            unbind_sync_session(ctx_token)

        record_import_rows(succeeded=result.success, failed=result.failed)
        logger.info(
            "import.completed",
            extra={
                "import_id": import_id,
                "total": result.total,
                "success": result.success,
                "failed": result.failed,
                "warnings": len(result.warnings),
                "policy": effective_policy,
            },
        )
        return result

    def _synthetic_base(self, db: Session, row_count: int) -> int:
        """Negative ids never collide with real iList ids; rows get consecutive ones below the base."""
        if row_count >= SYNTHETIC_ID_STRIDE:
            raise ValueError(f"imports are limited to {SYNTHETIC_ID_STRIDE - 1} rows")
        base = -(int(self._clock() * 1000) * SYNTHETIC_ID_STRIDE)
        # Another import in the same millisecond may already own this block.
        while (
            db.query(models.Property.id)
            .filter(models.Property.ilist_id.between(base - row_count, base - 1))
            .first()
            is not None
        ):
            base -= SYNTHETIC_ID_STRIDE
        return base

    def _process_rows(
        self,
        db: Session,
        *,
        rows: list[dict[str, str]],
        mapping: dict[str, str],
        policy: ImportFailurePolicy,
        import_id: str,
    ) -> ImportResult:
        result = ImportResult(total=len(rows), success=0, failed=0, import_id=import_id, policy=policy)
        synthetic_base = self._synthetic_base(db, len(rows))

        batch = db.begin_nested() if policy == "all_or_nothing" else None

        for index, row in enumerate(rows, start=1):
            outcome = normalize_row(row, mapping, fallback_ilist_id=synthetic_base - index)
            result.warnings.extend(
                ImportRowWarning(row=index, field=w.field, message=w.message) for w in outcome.warnings
            )

            if outcome.record is None:
                result.error_details.append(ImportRowError(row=index, data=dict(row), errors=outcome.errors))
                logger.warning(
                    "import.row.invalid",
                    extra={"import_id": import_id, "row": index, "errors": outcome.errors},
                )
                continue

            try:
                with db.begin_nested():
                    _, created = upsert_property_from_ilist(db, record_to_ilist_payload(outcome.record))
            except (SQLAlchemyError, ValueError) as exc:
                message = _persistence_message(exc)
                result.error_details.append(
                    ImportRowError(row=index, data=dict(row), errors=[message], stage="persistence")
                )
                logger.warning(
                    "import.row.failed",
                    extra={"import_id": import_id, "row": index, "error": message},
                )
                continue

            result.success += 1
            if created:
                result.created += 1
            else:
                result.updated += 1

        if batch is not None:
            if result.error_details:
                batch.rollback()
                logger.warning(
                    "import.batch.rolled_back",
                    extra={"import_id": import_id, "failed_rows": [e.row for e in result.error_details]},
                )
                result.success = 0
                result.created = 0
                result.updated = 0
                result.failed = result.total
                return result
            batch.commit()

        result.failed = len(result.error_details)
        return result

    @staticmethod
    def _session_error_details(result: ImportResult) -> dict[str, Any] | None:
        if not result.error_details and not result.warnings:
            return None
        return {
            "policy": result.policy,
            "errors": [asdict(e) for e in result.error_details],
            "warnings": [asdict(w) for w in result.warnings],
        }

    def get_import(self, db: Session, *, import_id: UUID) -> models.SyncSession:
        session = get_session(db, import_id, sync_type=models.SyncType.csv_import)
        if not session:
            raise HTTPException(status_code=404, detail="Import not found")
        return session
