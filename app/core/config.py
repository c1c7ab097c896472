from __future__ import annotations

import json
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ImportFailurePolicy = Literal["best_effort", "all_or_nothing"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    app_name: str = "estate-sync-api"
    environment: str = "dev"
    public_base_url: str = "http://localhost:8000"

    database_url: str

    # iList CRM
    ilist_base_url: str = "https://ilist.e-agents.gr"
    # Fallback when no active ilist_config row exists.
    ilist_auth_token: str | None = None
    ilist_timeout_seconds: float = 30.0
    ilist_max_attempts: int = 4
    ilist_retry_base_delay_ms: int = 500
    ilist_retry_max_delay_ms: int = 10_000
    ilist_rate_limit_per_minute: int = 10
    ilist_default_batch_size: int = 10
    ilist_language_id: int = 4
    ilist_sync_enabled: bool = False
    ilist_sync_interval_seconds: int = 900
    ilist_sync_include_deleted: bool = True

    # Shared secrets for machine-to-machine callers
    cron_secret: str | None = None
    webhook_secret: str | None = None

    # Imports
    import_failure_policy: ImportFailurePolicy = "best_effort"
    # Must stay below the synthetic id block size used by imports.
    import_max_rows: int = Field(default=5_000, ge=1, lt=1_000_000)

    celery_broker_url: str = "redis://redis:6379/0"
    celery_result_backend: str = "redis://redis:6379/1"
    celery_task_always_eager: bool = False
    celery_task_eager_propagates: bool = True
    celery_worker_prefetch_multiplier: int = 1
    celery_worker_max_tasks_per_child: int = 100

    # Error reporting
    sentry_dsn: str | None = None
    sentry_environment: str | None = None
    sentry_enabled_environments: list[str] = ["staging", "prod"]
    sentry_traces_sample_rate: float = 0.0

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    # CORS
    cors_allowed_origins: list[str] = []
    cors_allowed_methods: list[str] = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    cors_allowed_headers: list[str] = ["Authorization", "Content-Type", "X-Cron-Secret", "X-Webhook-Secret"]
    cors_allow_credentials: bool = False

    # Token crypto (at-rest encryption for the stored iList auth token)
    token_crypto_kms_key_id: str | None = None
    token_crypto_local_key_path: str | None = None
    token_crypto_local_key: str | None = None

    # Auth (identity provider JWT)
    auth_issuer: str | None = None
    auth_audience: str | None = None
    auth_jwks_url: str | None = None
    auth_jwt_algorithms: list[str] = ["RS256"]
    auth_jwks_cache_ttl_seconds: int = 300
    auth_clock_skew_seconds: int = 30

    # DB pooling
    # - "null" when an external pooler (pgbouncer) handles pooling
    # - "queue" for direct Postgres
    db_pool: str = "queue"
    db_pool_size: int = 5
    db_max_overflow: int = 10

    @model_validator(mode="after")
    def _normalize_lists(self) -> Settings:
        self.cors_allowed_origins = self._parse_env_list(self.cors_allowed_origins)
        self.cors_allowed_methods = self._parse_env_list(self.cors_allowed_methods)
        self.cors_allowed_headers = self._parse_env_list(self.cors_allowed_headers)
        self.sentry_enabled_environments = self._parse_env_list(self.sentry_enabled_environments)
        self.auth_jwt_algorithms = self._parse_env_list(self.auth_jwt_algorithms)

        if self.cors_allow_credentials and any(origin == "*" for origin in self.cors_allowed_origins):
            raise ValueError("cors_allowed_origins cannot include '*' when cors_allow_credentials is true")

        if self.ilist_default_batch_size < 1:
            raise ValueError("ilist_default_batch_size must be at least 1")

        return self

    @staticmethod
    def _parse_env_list(raw_value: list[str] | str) -> list[str]:
        if isinstance(raw_value, list):
            return [item.strip() for item in raw_value if item.strip()]

        value = raw_value.strip()
        if not value:
            return []

        if value.startswith("["):
            parsed = json.loads(value)
            if not isinstance(parsed, list):
                raise ValueError("list config must deserialize to a list")
            return [str(item).strip() for item in parsed if str(item).strip()]

        return [item.strip() for item in value.split(",") if item.strip()]

    def recommended_sync_schedule(self) -> str:
        minutes = max(self.ilist_sync_interval_seconds // 60, 1)
        return f"Every {minutes} minutes during business hours"


settings = Settings()
