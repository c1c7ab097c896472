from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.credential_cipher import CredentialCipher
from app.core.logging import get_logger
from app.db import models

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedIListConfig:
    auth_token: str
    base_url: str
    rate_limit_per_minute: int
    source: Literal["request", "database", "settings"]


class IListConfigService:
    """Stores the iList credentials (sealed at rest) and resolves which ones a run should use."""

    def __init__(
        self,
        *,
        cfg: Any = settings,
        cipher_factory: Callable[[Any], CredentialCipher] = CredentialCipher.from_settings,
    ) -> None:
        self._cfg = cfg
        self._cipher_factory = cipher_factory
        self._cipher: CredentialCipher | None = None

    @property
    def cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = self._cipher_factory(self._cfg)
        return self._cipher

    def get_active(self, db: Session) -> models.IListConfig | None:
        return (
            db.query(models.IListConfig)
            .filter(models.IListConfig.is_active.is_(True))
            .order_by(models.IListConfig.updated_at.desc())
            .first()
        )

    def _open_token(self, db: Session, config: models.IListConfig) -> str | None:
        opened = self.cipher.open(config.auth_token)
        if opened.needs_reseal and opened.plaintext:
            config.auth_token = self.cipher.seal(opened.plaintext) or config.auth_token
            db.add(config)
            db.flush()
            logger.info("ilist.config.token_resealed", extra={"config_id": str(config.id)})
        return opened.plaintext

    def resolve(self, db: Session, *, override_token: str | None = None) -> ResolvedIListConfig:
        if override_token and override_token.strip():
            active = self.get_active(db)
            return ResolvedIListConfig(
                auth_token=override_token.strip(),
                base_url=active.api_base_url if active else self._cfg.ilist_base_url,
                rate_limit_per_minute=active.rate_limit_per_minute if active else self._cfg.ilist_rate_limit_per_minute,
                source="request",
            )

        active = self.get_active(db)
        if active:
            token = self._open_token(db, active)
            if token:
                return ResolvedIListConfig(
                    auth_token=token,
                    base_url=active.api_base_url,
                    rate_limit_per_minute=active.rate_limit_per_minute,
                    source="database",
                )

        if self._cfg.ilist_auth_token:
            return ResolvedIListConfig(
                auth_token=self._cfg.ilist_auth_token,
                base_url=self._cfg.ilist_base_url,
                rate_limit_per_minute=self._cfg.ilist_rate_limit_per_minute,
                source="settings",
            )

        raise HTTPException(status_code=400, detail="No active iList configuration found")

    def save_token(
        self,
        db: Session,
        *,
        auth_token: str,
        base_url: str | None = None,
        rate_limit_per_minute: int | None = None,
    ) -> models.IListConfig:
        """Make ``auth_token`` the single active configuration."""
        now = datetime.now(UTC)
        (
            db.query(models.IListConfig)
            .filter(models.IListConfig.is_active.is_(True))
            .update({"is_active": False, "updated_at": now}, synchronize_session=False)
        )

        config = models.IListConfig(
            auth_token=self.cipher.seal(auth_token.strip()) or "",
            api_base_url=(base_url or self._cfg.ilist_base_url).rstrip("/"),
            rate_limit_per_minute=rate_limit_per_minute or self._cfg.ilist_rate_limit_per_minute,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(config)
        db.flush()
        logger.info("ilist.config.saved", extra={"config_id": str(config.id), "base_url": config.api_base_url})
        return config
