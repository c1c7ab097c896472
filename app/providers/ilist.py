from __future__ import annotations

import time
from collections import deque
from collections.abc import Iterator
from datetime import datetime
from random import random
from typing import Any

import httpx

from app.core.logging import get_logger
from app.core.metrics import record_ilist_call_result
from app.providers.base import ProviderError, ProviderRequestLog, ProviderRequestLogger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://ilist.e-agents.gr"
PROPERTIES_ENDPOINT = "/api/properties"
LOOKUPS_ENDPOINT = "/api/lookups"

STATUS_ACTIVE = "1"
STATUS_DELETED = "2"
GREEK_LANGUAGE_ID = 4

LOOKUP_TYPES: tuple[str, ...] = (
    "PropertyAmenities",
    "PropertySecurity",
    "HeatingType",
    "PropertySpecialFeatures",
    "PropertyUniqueFeatures",
    "NearTo",
    "ImageTypes",
    "Geography",
    "propertycategories",
    "propertysubcategories",
    "floors",
    "places",
    "FramesTypes",
    "GlazedWindows",
    "EstateStatus",
    "View",
    "Orientation",
    "SuitableFor",
    "PropertyAdvantages",
)

_RATE_WINDOW_SECONDS = 60.0


def format_utc(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class IListClient:
    """
    Synchronous client for the iList CRM REST API.

    Every call goes through ``_request``: a sliding-window throttle keeps us under
    ``rate_limit_per_minute``, and network errors / 429 / 5xx are retried with
    exponential backoff (``Retry-After`` wins when present). All iList calls we
    make are reads, so retrying them is safe.
    """

    name = "ilist"

    def __init__(
        self,
        *,
        auth_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        max_attempts: int = 4,
        retry_base_delay_ms: int = 500,
        retry_max_delay_ms: int = 10_000,
        rate_limit_per_minute: int = 10,
        request_logger: ProviderRequestLogger | None = None,
    ) -> None:
        if not auth_token:
            raise ValueError("iList auth token is required")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(max_attempts, 1)
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self.rate_limit_per_minute = max(rate_limit_per_minute, 1)
        self.last_request_meta: dict[str, Any] | None = None
        self.last_duration_ms: int | None = None
        self._request_logger = request_logger
        self._auth_token = auth_token
        self._recent_requests: deque[float] = deque()

    @classmethod
    def from_settings(
        cls,
        cfg: Any,
        *,
        auth_token: str,
        base_url: str | None = None,
        rate_limit_per_minute: int | None = None,
        request_logger: ProviderRequestLogger | None = None,
    ) -> IListClient:
        return cls(
            auth_token=auth_token,
            base_url=base_url or cfg.ilist_base_url,
            timeout_seconds=cfg.ilist_timeout_seconds,
            max_attempts=cfg.ilist_max_attempts,
            retry_base_delay_ms=cfg.ilist_retry_base_delay_ms,
            retry_max_delay_ms=cfg.ilist_retry_max_delay_ms,
            rate_limit_per_minute=rate_limit_per_minute or cfg.ilist_rate_limit_per_minute,
            request_logger=request_logger,
        )

    # -------------------------
    # Transport
    # -------------------------

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "authorization": self._auth_token,
        }
        if extra:
            headers.update(extra)
        return headers

    def _log_request(
        self,
        *,
        endpoint: str,
        method: str,
        status_code: int | None,
        duration_ms: int | None,
        error: str | None,
        meta: dict[str, Any] | None,
    ) -> None:
        record_ilist_call_result(endpoint=endpoint, status_code=status_code, error=error)
        if self._request_logger is None:
            return
        self._request_logger(
            ProviderRequestLog(
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                duration_ms=duration_ms,
                error=error,
                meta=meta,
            )
        )

    def _throttle(self) -> None:
        now = time.monotonic()
        while self._recent_requests and now - self._recent_requests[0] >= _RATE_WINDOW_SECONDS:
            self._recent_requests.popleft()

        if len(self._recent_requests) >= self.rate_limit_per_minute:
            wait_seconds = _RATE_WINDOW_SECONDS - (now - self._recent_requests[0])
            if wait_seconds > 0:
                logger.info(
                    "ilist.rate_limit.wait",
                    extra={"wait_seconds": round(wait_seconds, 3), "limit": self.rate_limit_per_minute},
                )
                time.sleep(wait_seconds)
            self._recent_requests.popleft()

        self._recent_requests.append(time.monotonic())

    @staticmethod
    def _parse_retry_after_seconds(raw: str | None) -> float | None:
        if not raw:
            return None
        try:
            return max(float(raw), 0.0)
        except ValueError:
            return None

    @staticmethod
    def _is_retryable_status(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    def _compute_backoff_seconds(self, attempt: int) -> float:
        base = max(self.retry_base_delay_ms, 1) / 1000.0
        max_delay = max(self.retry_max_delay_ms, self.retry_base_delay_ms) / 1000.0
        capped = min(base * (2 ** max(attempt - 1, 0)), max_delay)
        return capped * (0.5 + random())

    @staticmethod
    def _response_meta(
        *, attempt: int, attempts: int, retry_after_seconds: float | None
    ) -> dict[str, Any]:
        return {
            "attempt": attempt,
            "attempts_total": attempts,
            "max_attempts": attempts,
            "retry_after_seconds": retry_after_seconds,
        }

    def _resolve_url(self, endpoint_or_url: str) -> str:
        if endpoint_or_url.startswith(("http://", "https://")):
            return endpoint_or_url
        return f"{self.base_url}/{endpoint_or_url.lstrip('/')}"

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        target_url = self._resolve_url(url or endpoint)
        start = time.perf_counter()
        attempts = self.max_attempts
        final_meta: dict[str, Any] | None = None

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp: httpx.Response | None = None
                for attempt in range(1, attempts + 1):
                    self._throttle()
                    attempt_start = time.perf_counter()
                    try:
                        resp = client.request(
                            method,
                            target_url,
                            headers=self._headers(headers),
                            json=json_body,
                        )
                    except httpx.RequestError as e:
                        duration_ms = int((time.perf_counter() - attempt_start) * 1000)
                        final_meta = self._response_meta(
                            attempt=attempt, attempts=attempts, retry_after_seconds=None
                        )
                        final_meta["retryable"] = True
                        self._log_request(
                            endpoint=endpoint,
                            method=method,
                            status_code=None,
                            duration_ms=duration_ms,
                            error=f"iList network error: {e}",
                            meta=final_meta,
                        )
                        if attempt < attempts:
                            logger.warning(
                                "ilist.request.retry",
                                extra={"endpoint": endpoint, "attempt": attempt, "error": str(e)},
                            )
                            time.sleep(self._compute_backoff_seconds(attempt))
                            continue

                        raise ProviderError(
                            f"iList network error: {e}",
                            status_code=None,
                            meta=final_meta,
                            endpoint=endpoint,
                            method=method,
                            duration_ms=int((time.perf_counter() - start) * 1000),
                        ) from e

                    retry_after_seconds = self._parse_retry_after_seconds(resp.headers.get("Retry-After"))
                    final_meta = self._response_meta(
                        attempt=attempt, attempts=attempts, retry_after_seconds=retry_after_seconds
                    )
                    duration_ms = int((time.perf_counter() - attempt_start) * 1000)
                    self._log_request(
                        endpoint=endpoint,
                        method=method,
                        status_code=resp.status_code,
                        duration_ms=duration_ms,
                        error=None if resp.status_code == 200 else f"iList error {resp.status_code}",
                        meta=final_meta,
                    )

                    if resp.status_code == 200:
                        break

                    if attempt < attempts and self._is_retryable_status(resp.status_code):
                        logger.warning(
                            "ilist.request.retry",
                            extra={
                                "endpoint": endpoint,
                                "attempt": attempt,
                                "status_code": resp.status_code,
                                "retry_after_seconds": retry_after_seconds,
                            },
                        )
                        time.sleep(
                            retry_after_seconds
                            if retry_after_seconds is not None
                            else self._compute_backoff_seconds(attempt)
                        )
                        continue

                    raise ProviderError(
                        f"iList error {resp.status_code}",
                        status_code=resp.status_code,
                        meta=final_meta,
                        endpoint=endpoint,
                        method=method,
                        duration_ms=int((time.perf_counter() - start) * 1000),
                    )

            duration_ms = int((time.perf_counter() - start) * 1000)
            self.last_request_meta = final_meta
            self.last_duration_ms = duration_ms

            if resp is None:
                raise ProviderError("iList empty response", status_code=None, endpoint=endpoint, method=method)

            try:
                data = resp.json()
            except ValueError as e:
                raise ProviderError(
                    "iList returned a non-JSON response",
                    status_code=resp.status_code,
                    meta=final_meta,
                    endpoint=endpoint,
                    method=method,
                    duration_ms=duration_ms,
                ) from e

            if not isinstance(data, dict):
                raise ProviderError(
                    "iList returned an unexpected payload",
                    status_code=resp.status_code,
                    meta=final_meta,
                    endpoint=endpoint,
                    method=method,
                    duration_ms=duration_ms,
                )
            return data

        except ProviderError as e:
            self.last_request_meta = e.meta
            self.last_duration_ms = e.duration_ms
            logger.error(
                "ilist.request.failed",
                extra={
                    "endpoint": endpoint,
                    "method": method,
                    "status_code": e.status_code,
                    "duration_ms": e.duration_ms,
                    "error": str(e),
                },
            )
            raise

    @staticmethod
    def _ensure_success(data: dict[str, Any], *, endpoint: str, method: str) -> dict[str, Any]:
        if data.get("success") is True:
            return data
        raise ProviderError(
            f"iList request unsuccessful: {data.get('error') or data.get('code') or 'unknown error'}",
            status_code=200,
            endpoint=endpoint,
            method=method,
        )

    # -------------------------
    # Properties
    # -------------------------

    def test_connection(self) -> bool:
        try:
            data = self._request("GET", PROPERTIES_ENDPOINT)
        except ProviderError:
            return False
        return data.get("success") is True

    def fetch_properties(
        self,
        params: dict[str, Any] | None = None,
        *,
        detailed: bool = False,
        page_size: int | None = None,
        page_url: str | None = None,
    ) -> dict[str, Any]:
        """
        One page of ``POST /api/properties``. Returns the raw envelope
        (``code, success, total, data, nextPage, error``).
        """
        body: dict[str, Any] = {
            "StatusID": STATUS_ACTIVE,
            "isSync": True,
            "IncludeDeletedFromCrm": False,
        }
        body.update(params or {})
        if page_size is not None:
            body["PageSize"] = page_size

        data = self._request(
            "POST",
            PROPERTIES_ENDPOINT,
            url=page_url,
            headers={"Details": "Full" if detailed else "Basic"},
            json_body=body,
        )
        data = self._ensure_success(data, endpoint=PROPERTIES_ENDPOINT, method="POST")
        if data.get("data") is None:
            data["data"] = []
        if not isinstance(data["data"], list):
            raise ProviderError(
                "iList properties payload is not a list",
                status_code=200,
                endpoint=PROPERTIES_ENDPOINT,
                method="POST",
            )
        return data

    def iter_property_pages(
        self,
        params: dict[str, Any] | None = None,
        *,
        detailed: bool = True,
        page_size: int | None = None,
    ) -> Iterator[list[dict[str, Any]]]:
        """Yield each page of properties, following ``nextPage`` until it is exhausted."""
        page_url: str | None = None
        seen_pages: set[str] = set()
        while True:
            envelope = self.fetch_properties(params, detailed=detailed, page_size=page_size, page_url=page_url)
            yield envelope["data"]

            next_page = envelope.get("nextPage")
            if not next_page or not str(next_page).strip():
                return
            page_url = self._resolve_url(str(next_page).strip())
            if page_url in seen_pages:
                logger.warning("ilist.pagination.cycle", extra={"next_page": page_url})
                return
            seen_pages.add(page_url)

    def full_sync(self, *, page_size: int | None = None) -> Iterator[list[dict[str, Any]]]:
        """Pages of every active property."""
        return self.iter_property_pages(
            {"StatusID": STATUS_ACTIVE, "isSync": True, "IncludeDeletedFromCrm": False},
            page_size=page_size,
        )

    def incremental_sync(
        self, since: datetime, *, page_size: int | None = None
    ) -> Iterator[list[dict[str, Any]]]:
        """Pages of active properties updated since ``since``."""
        return self.iter_property_pages(
            {
                "StatusID": STATUS_ACTIVE,
                "isSync": True,
                "UpdateDateFromUTC": format_utc(since),
                "IncludeDeletedFromCrm": False,
            },
            page_size=page_size,
        )

    def deleted_properties(
        self, since: datetime | None = None, *, page_size: int | None = None
    ) -> Iterator[list[dict[str, Any]]]:
        params: dict[str, Any] = {
            "StatusID": STATUS_DELETED,
            "isSync": True,
            "IncludeDeletedFromCrm": True,
        }
        if since is not None:
            params["UpdateDateFromUTC"] = format_utc(since)
        return self.iter_property_pages(params, page_size=page_size)

    def fetch_property_by_id(self, ilist_id: int) -> dict[str, Any] | None:
        endpoint = f"{PROPERTIES_ENDPOINT}/{ilist_id}"
        try:
            data = self._request("GET", endpoint, headers={"Details": "Full"})
        except ProviderError as e:
            if e.status_code == 404:
                return None
            raise
        if data.get("success") is not True or not isinstance(data.get("data"), dict):
            return None
        return data["data"]

    # -------------------------
    # Lookups
    # -------------------------

    def fetch_lookup_data(self, lookup_type: str, *, language_id: int = GREEK_LANGUAGE_ID) -> list[dict[str, Any]]:
        endpoint = f"{LOOKUPS_ENDPOINT}/{lookup_type}"
        data = self._request("GET", endpoint, headers={"Language": str(language_id)})
        if data.get("success") is not True or not isinstance(data.get("data"), list):
            return []
        return [item for item in data["data"] if isinstance(item, dict)]

    def fetch_all_lookups(self, *, language_id: int = GREEK_LANGUAGE_ID) -> dict[str, list[dict[str, Any]]]:
        """Fetch every known lookup table; a failing table comes back empty."""
        lookups: dict[str, list[dict[str, Any]]] = {}
        for lookup_type in LOOKUP_TYPES:
            try:
                lookups[lookup_type] = self.fetch_lookup_data(lookup_type, language_id=language_id)
            except ProviderError as e:
                logger.warning(
                    "ilist.lookups.fetch_failed",
                    extra={"lookup_type": lookup_type, "status_code": e.status_code, "error": str(e)},
                )
                lookups[lookup_type] = []
        return lookups
