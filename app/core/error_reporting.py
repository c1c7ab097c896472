from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import sentry_sdk

from app.core.config import settings
from app.core.logging import get_logger, redact_sensitive_data
from app.core.request_context import get_request_id, get_sync_session_id

logger = get_logger(__name__)

def _normalized(values: Sequence[str]) -> set[str]:
    return {value.strip().lower() for value in values if value.strip()}


def _before_send(event: dict[str, Any], _hint: dict[str, Any]) -> dict[str, Any]:
    request_id = get_request_id()
    tags = event.setdefault("tags", {})
    tags.setdefault("request_id", request_id)
    extra = event.setdefault("extra", {})
    extra.setdefault("request_id", request_id)

    sync_session_id = get_sync_session_id()
    if sync_session_id:
        tags.setdefault("sync_session_id", sync_session_id)

    request = event.get("request")
    if isinstance(request, dict) and isinstance(request.get("headers"), dict):
        request["headers"] = redact_sensitive_data(request["headers"])
    return event


def configure_error_reporting() -> bool:
    enabled_environments = _normalized(settings.sentry_enabled_environments)
    environment = settings.environment.strip().lower()

    if not settings.sentry_dsn:
        logger.info("error_reporting.disabled", extra={"reason": "missing_dsn", "environment": environment})
        return False

    if environment not in enabled_environments:
        logger.info(
            "error_reporting.disabled",
            extra={
                "reason": "environment_not_enabled",
                "environment": environment,
                "enabled_environments": sorted(enabled_environments),
            },
        )
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment or settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        before_send=_before_send,
    )
    logger.info(
        "error_reporting.enabled",
        extra={
            "environment": settings.sentry_environment or settings.environment,
            "traces_sample_rate": settings.sentry_traces_sample_rate,
        },
    )
    return True
