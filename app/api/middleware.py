from __future__ import annotations

import time
import uuid

import sentry_sdk
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import get_logger
from app.core.metrics import record_request_latency
from app.core.request_context import reset_request_id, set_request_id

logger = get_logger("app.request")


def _route_template(request: Request) -> str:
    # "/api/properties/{property_id}/status" rather than one series per property.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request_id_token = set_request_id(request_id)
        start = time.perf_counter()

        logger.info(
            "request.start",
            extra={"request_id": request_id, "method": request.method, "path": request.url.path},
        )
        sentry_sdk.set_tag("request_id", request_id)

        try:
            response = await call_next(request)
        except Exception:
            duration_seconds = time.perf_counter() - start
            logger.exception(
                "request.unhandled_exception",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "user_id": getattr(request.state, "user_id", None),
                    "duration_ms": int(duration_seconds * 1000),
                },
            )
            record_request_latency(
                method=request.method,
                path=_route_template(request),
                status_code=500,
                duration_seconds=duration_seconds,
            )
            reset_request_id(request_id_token)
            raise

        duration_seconds = time.perf_counter() - start
        logger.info(
            "request.end",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "user_id": getattr(request.state, "user_id", None),
                "role": getattr(request.state, "role", None),
                "duration_ms": int(duration_seconds * 1000),
            },
        )
        record_request_latency(
            method=request.method,
            path=_route_template(request),
            status_code=response.status_code,
            duration_seconds=duration_seconds,
        )

        response.headers["x-request-id"] = request_id
        reset_request_id(request_id_token)
        return response
