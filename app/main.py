# app/main.py
from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.middleware import RequestIDMiddleware
from app.api.routers.health import router as health_router
from app.api.routers.ilist_sync import router as ilist_sync_router
from app.api.routers.property_import import router as property_import_router
from app.api.routers.property_status import router as property_status_router
from app.api.routers.webhooks import router as webhooks_router
from app.core.config import settings
from app.core.error_reporting import configure_error_reporting
from app.core.logging import configure_logging, get_logger, redact_sensitive_data
from app.providers.base import ProviderError
from app.services.ilist_sync import SyncAbortedError
from app.services.tabular import TabularParseError

logger = get_logger(__name__)


def _error_response_payload(
    *,
    message: str,
    code: str,
    status: int,
    details: Any | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "error": message,
        "code": code,
        "status": status,
    }
    if details is not None:
        payload["details"] = details
    return payload


def _request_context(request: Request, *, status_code: int, code: str) -> dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", "-"),
        "method": request.method,
        "path": str(request.url.path),
        "status_code": status_code,
        "internal_error_code": code,
    }


def create_app(*, logging_replace_handlers: bool | None = None) -> FastAPI:
    if logging_replace_handlers is None:
        logging_replace_handlers = settings.environment.lower() != "test"

    configure_logging(
        level=settings.log_level,
        json_logs=settings.json_logs,
        replace_handlers=logging_replace_handlers,
    )
    configure_error_reporting()

    logger.info(
        "app.startup",
        extra={
            "app_name": settings.app_name,
            "environment": settings.environment,
            "json_logs": settings.json_logs,
            "auth_issuer_configured": bool(settings.auth_issuer),
            "auth_jwks_url_configured": bool(settings.auth_jwks_url),
            "ilist_token_configured": bool(settings.ilist_auth_token),
        },
    )

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=settings.cors_allowed_methods,
        allow_headers=settings.cors_allowed_headers,
        allow_credentials=settings.cors_allow_credentials,
    )
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        message = detail if isinstance(detail, str) else "request failed"
        details = None if isinstance(detail, str) else jsonable_encoder(detail)
        request_context = _request_context(request, status_code=exc.status_code, code="http_error")

        if exc.status_code >= 500:
            logger.error(
                "http.exception.server", extra={**request_context, "event_name": "http.exception.server"}
            )
        elif exc.status_code in {401, 403}:
            logger.warning(
                "http.exception.auth", extra={**request_context, "event_name": "http.exception.auth"}
            )

        return JSONResponse(
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
            content=_error_response_payload(
                message=message,
                code="http_error",
                status=exc.status_code,
                details=details,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info(
            "request.validation_error",
            extra={
                **_request_context(request, status_code=422, code="validation_error"),
                "event_name": "request.validation_error",
            },
        )
        return JSONResponse(
            status_code=422,
            content=_error_response_payload(
                message="validation error",
                code="validation_error",
                status=422,
                details=jsonable_encoder(exc.errors()),
            ),
        )

    @app.exception_handler(TabularParseError)
    async def parse_exception_handler(request: Request, exc: TabularParseError):
        logger.info(
            "import.parse_error",
            extra={**_request_context(request, status_code=400, code="parse_error"), "error": str(exc)},
        )
        return JSONResponse(
            status_code=400,
            content=_error_response_payload(message=str(exc), code="parse_error", status=400),
        )

    @app.exception_handler(SyncAbortedError)
    async def sync_aborted_handler(request: Request, exc: SyncAbortedError):
        logger.warning(
            "ilist.sync.aborted_response",
            extra={
                **_request_context(request, status_code=502, code="sync_aborted"),
                "sync_session_id": exc.session_id,
            },
        )
        return JSONResponse(
            status_code=502,
            content=_error_response_payload(
                message=str(exc),
                code="sync_aborted",
                status=502,
                details=jsonable_encoder({"session_id": exc.session_id, **(exc.details or {})}),
            ),
        )

    @app.exception_handler(ProviderError)
    async def provider_exception_handler(request: Request, exc: ProviderError):
        logger.warning(
            "ilist.error_response",
            extra={
                **_request_context(request, status_code=502, code="ilist_error"),
                "upstream_status": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=502,
            content=_error_response_payload(
                message=str(redact_sensitive_data(str(exc))),
                code="ilist_error",
                status=502,
                details=jsonable_encoder(exc.as_details()),
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "http.exception.unhandled",
            extra={
                **_request_context(request, status_code=500, code="internal_error"),
                "error_type": exc.__class__.__name__,
            },
        )
        return JSONResponse(
            status_code=500,
            content=_error_response_payload(
                message="Internal server error",
                code="internal_error",
                status=500,
            ),
        )

    app.include_router(health_router)
    app.include_router(property_import_router, prefix="/api")
    app.include_router(property_status_router, prefix="/api")
    app.include_router(ilist_sync_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    return app


app = create_app()
