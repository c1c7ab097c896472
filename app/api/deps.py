from __future__ import annotations

import hmac
from collections.abc import Callable, Iterator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.auth import Capability, CapabilityChecker, Principal, build_verifier
from app.core.config import settings
from app.core.logging import get_logger
from app.db.base import SessionLocal

logger = get_logger("app.auth")


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def _get_auth_verifier():
    return build_verifier()


@lru_cache(maxsize=1)
def get_capability_checker() -> CapabilityChecker:
    return CapabilityChecker()


def get_current_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    if credentials is None:
        logger.info(
            "auth.missing_bearer",
            extra={
                "request_id": getattr(request.state, "request_id", "-"),
                "path": str(request.url.path),
                "method": request.method,
            },
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    principal = _get_auth_verifier().verify(credentials.credentials)
    request.state.user_id = principal.user_id
    request.state.role = principal.role
    return principal


def require_capability(capability: Capability) -> Callable[..., Principal]:
    def _dependency(
        principal: Annotated[Principal, Depends(get_current_principal)],
        checker: Annotated[CapabilityChecker, Depends(get_capability_checker)],
    ) -> Principal:
        checker.require(principal, capability)
        return principal

    return _dependency


def _secret_matches(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_cron_secret(
    request: Request,
    x_cron_secret: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    if not settings.cron_secret:
        logger.error("auth.cron_secret.unconfigured", extra={"path": str(request.url.path)})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron secret not configured")

    provided = x_cron_secret
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()

    if not _secret_matches(provided, settings.cron_secret):
        logger.warning("auth.cron_secret.rejected", extra={"path": str(request.url.path)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_webhook_secret(
    request: Request,
    x_webhook_secret: Annotated[str | None, Header()] = None,
) -> None:
    if not settings.webhook_secret:
        logger.error("auth.webhook_secret.unconfigured", extra={"path": str(request.url.path)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Webhook secret not configured"
        )

    if not _secret_matches(x_webhook_secret, settings.webhook_secret):
        logger.warning("auth.webhook_secret.rejected", extra={"path": str(request.url.path)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")
