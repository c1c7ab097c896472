from __future__ import annotations

import pytest

from app.core.config import settings
from app.services.ilist_sync import SyncResult, SyncStats
from app.tasks import scheduled_ilist_sync_task, sync_ilist_lookups_task


class _FakeDB:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
        self.closed = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed += 1


class _FakeSyncService:
    last_sync_date = None
    error: Exception | None = None
    seen_options = None

    def resolve_last_sync_date(self, _db):
        return self.last_sync_date

    def perform_sync(self, _db, options):
        _FakeSyncService.seen_options = options
        if self.error is not None:
            raise self.error
        return SyncResult(
            success=True,
            session_id="s-1",
            sync_type=options.sync_type,
            status="completed",
            full_fetch=options.last_sync_date is None,
            duration_seconds=0,
            stats=SyncStats(total=2, new=2),
        )

    def sync_lookup_data(self, _db, *, language_id, triggered_by=None):
        if self.error is not None:
            raise self.error
        return {"floors": language_id}


@pytest.fixture()
def fake_db(monkeypatch):
    db = _FakeDB()
    monkeypatch.setattr("app.tasks.SessionLocal", lambda: db)
    monkeypatch.setattr("app.tasks.IListSyncService", _FakeSyncService)
    monkeypatch.setattr(_FakeSyncService, "error", None)
    return db


def test_scheduled_sync_is_noop_when_disabled(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "ilist_sync_enabled", False)

    assert scheduled_ilist_sync_task.run() == {"disabled": True}
    assert fake_db.closed == 0


def test_scheduled_sync_commits_and_returns_result(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "ilist_sync_enabled", True)

    result = scheduled_ilist_sync_task.run("full")

    assert result["status"] == "completed"
    assert result["stats"]["new"] == 2
    assert _FakeSyncService.seen_options.triggered_by == "scheduler"
    assert _FakeSyncService.seen_options.include_deleted is settings.ilist_sync_include_deleted
    assert (fake_db.commits, fake_db.rollbacks, fake_db.closed) == (1, 0, 1)


def test_scheduled_sync_rolls_back_and_reraises(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "ilist_sync_enabled", True)
    monkeypatch.setattr(_FakeSyncService, "error", RuntimeError("ilist unreachable"))

    with pytest.raises(RuntimeError, match="ilist unreachable"):
        scheduled_ilist_sync_task.run()

    assert (fake_db.commits, fake_db.rollbacks, fake_db.closed) == (0, 1, 1)


def test_lookup_task_defaults_language(fake_db, monkeypatch):
    monkeypatch.setattr(settings, "ilist_language_id", 4)

    assert sync_ilist_lookups_task.run() == {"floors": 4}
    assert fake_db.commits == 1
    assert fake_db.closed == 1


def test_lookup_task_rolls_back_on_error(fake_db, monkeypatch):
    monkeypatch.setattr(_FakeSyncService, "error", RuntimeError("lookup failed"))

    with pytest.raises(RuntimeError, match="lookup failed"):
        sync_ilist_lookups_task.run(1)

    assert fake_db.rollbacks == 1
    assert fake_db.closed == 1
