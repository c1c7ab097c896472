from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

REQUEST_LATENCY_SECONDS = Histogram(
    "estate_sync_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status_code"),
)

ILIST_CALL_RESULTS_TOTAL = Counter(
    "estate_sync_ilist_call_results_total",
    "iList API call results by endpoint and outcome",
    labelnames=("endpoint", "outcome", "status_code"),
)

IMPORT_ROW_OUTCOMES_TOTAL = Counter(
    "estate_sync_import_row_outcomes_total",
    "Property import row outcomes",
    labelnames=("outcome",),
)

SYNC_RUNS_TOTAL = Counter(
    "estate_sync_sync_runs_total",
    "iList sync runs by type and final status",
    labelnames=("sync_type", "status"),
)

SYNC_RECORD_OUTCOMES_TOTAL = Counter(
    "estate_sync_sync_record_outcomes_total",
    "iList sync per-record outcomes",
    labelnames=("outcome",),
)

SYNC_DURATION_SECONDS = Histogram(
    "estate_sync_sync_duration_seconds",
    "iList sync run duration in seconds",
    labelnames=("sync_type",),
)


def record_request_latency(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    REQUEST_LATENCY_SECONDS.labels(method=method, path=path, status_code=str(status_code)).observe(
        duration_seconds
    )


def record_ilist_call_result(*, endpoint: str, status_code: int | None, error: str | None) -> None:
    if error:
        outcome = "error"
    elif status_code is not None and 200 <= status_code < 300:
        outcome = "success"
    else:
        outcome = "unknown"

    ILIST_CALL_RESULTS_TOTAL.labels(
        endpoint=endpoint,
        outcome=outcome,
        status_code=str(status_code) if status_code is not None else "none",
    ).inc()


def record_import_rows(*, succeeded: int, failed: int) -> None:
    if succeeded:
        IMPORT_ROW_OUTCOMES_TOTAL.labels(outcome="success").inc(succeeded)
    if failed:
        IMPORT_ROW_OUTCOMES_TOTAL.labels(outcome="failed").inc(failed)


def record_sync_record_outcome(*, outcome: str) -> None:
    SYNC_RECORD_OUTCOMES_TOTAL.labels(outcome=outcome).inc()


def record_sync_run(*, sync_type: str, status: str, duration_seconds: float) -> None:
    SYNC_RUNS_TOTAL.labels(sync_type=sync_type, status=status).inc()
    SYNC_DURATION_SECONDS.labels(sync_type=sync_type).observe(max(duration_seconds, 0.0))


def metrics_payload() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
