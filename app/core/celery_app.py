from __future__ import annotations

from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "estate_sync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

beat_schedule: dict[str, dict] = {}
if settings.ilist_sync_enabled:
    beat_schedule["scheduled-ilist-sync"] = {
        "task": "app.tasks.scheduled_ilist_sync",
        "schedule": max(settings.ilist_sync_interval_seconds, 60),
        "options": {"expires": max(settings.ilist_sync_interval_seconds - 1, 1)},
    }

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_default_queue="estate_sync",
    worker_prefetch_multiplier=settings.celery_worker_prefetch_multiplier,
    worker_max_tasks_per_child=settings.celery_worker_max_tasks_per_child,
    broker_connection_retry_on_startup=True,
    task_always_eager=settings.celery_task_always_eager,
    task_eager_propagates=settings.celery_task_eager_propagates,
    beat_schedule=beat_schedule,
)

celery_app.autodiscover_tasks(["app"])
