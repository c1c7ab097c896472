from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class ProviderError(Exception):
    """Raised when a provider request fails in a controlled way."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        meta: dict[str, Any] | None = None,
        endpoint: str | None = None,
        method: str = "GET",
        duration_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.meta = meta
        self.endpoint = endpoint
        self.method = method
        self.duration_ms = duration_ms

    def as_details(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "status_code": self.status_code,
            "duration_ms": self.duration_ms,
            "attempts": (self.meta or {}).get("attempts_total"),
        }


@dataclass(frozen=True)
class ProviderRequestLog:
    endpoint: str
    method: str
    status_code: int | None
    duration_ms: int | None
    error: str | None
    meta: dict[str, Any] | None


ProviderRequestLogger = Callable[[ProviderRequestLog], None]
