from __future__ import annotations

from datetime import UTC, datetime

import pytest
from fastapi import HTTPException

from app.core.config import settings
from app.db import models
from app.providers.base import ProviderError
from app.services.ilist_config import IListConfigService
from app.services.ilist_sync import IListSyncService, SyncAbortedError, SyncOptions
from app.services.sync_sessions import finalize_session, open_session


@pytest.fixture()
def ilist_token(monkeypatch):
    monkeypatch.setattr(settings, "ilist_auth_token", "env-token")


def _service(fake, seen: list | None = None) -> IListSyncService:
    def _factory(resolved, request_logger):
        if seen is not None:
            seen.append(resolved)
        fake.request_logger = request_logger
        return fake

    return IListSyncService(client_factory=_factory)


def test_full_sync_creates_properties(fake_ilist, db_session, ilist_token, ilist_payload):
    fake = fake_ilist(pages=[[ilist_payload(1), ilist_payload(2)], [ilist_payload(3)]])

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="full", batch_size=25))

    assert result.success is True
    assert result.status == "completed"
    assert result.full_fetch is True
    assert (result.stats.total, result.stats.new, result.stats.failed) == (3, 3, 0)
    assert fake.calls == [("full", 25)]

    prop = db_session.query(models.Property).filter_by(ilist_id=1).one()
    assert prop.title == "Sea view flat"
    assert prop.description == "Bright, renovated"
    assert len(prop.images) == 1
    assert prop.partner.email == "m@agency.test"

    session = db_session.query(models.SyncSession).one()
    assert session.status == "completed"
    assert session.new_properties == 3
    assert session.api_responses[0]["action"] == "request"
    assert session.api_responses[-1] == {
        "action": "summary",
        "total": 3,
        "new": 3,
        "updated": 0,
        "deleted": 0,
        "skipped": 0,
        "failed": 0,
    }


def test_incremental_sync_updates_newer_and_skips_unchanged(
    fake_ilist, db_session, ilist_token, ilist_payload
):
    _service(fake_ilist(pages=[[ilist_payload(1), ilist_payload(2)]])).perform_sync(
        db_session, SyncOptions(sync_type="full")
    )
    since = datetime(2026, 3, 1, tzinfo=UTC)
    newer = ilist_payload(1, UpdateDate="2026-03-02T08:00:00Z", Price=260000)
    unchanged = ilist_payload(2)
    fake = fake_ilist(pages=[[newer, unchanged, ilist_payload(3)]])

    result = _service(fake).perform_sync(
        db_session, SyncOptions(sync_type="incremental", last_sync_date=since)
    )

    assert result.full_fetch is False
    assert fake.calls[0] == ("incremental", since, 10)
    assert (result.stats.new, result.stats.updated, result.stats.skipped) == (1, 1, 1)
    assert db_session.query(models.Property).filter_by(ilist_id=1).one().price == 260000


def test_incremental_without_history_falls_back_to_full_fetch(fake_ilist, db_session, ilist_token):
    fake = fake_ilist(pages=[])

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="incremental"))

    assert result.full_fetch is True
    assert fake.calls == [("full", 10)]
    assert db_session.query(models.SyncSession).one().sync_type == "incremental"


def test_include_deleted_marks_properties_inactive(fake_ilist, db_session, ilist_token, ilist_payload):
    fake = fake_ilist(pages=[[ilist_payload(1)]], deleted_pages=[[ilist_payload(7)]])

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="full", include_deleted=True))

    assert result.stats.deleted == 1
    assert result.stats.total == 1
    deleted = db_session.query(models.Property).filter_by(ilist_id=7).one()
    assert deleted.status_id == models.PropertyStatus.inactive.value


def test_failed_record_is_counted_and_others_persist(fake_ilist, db_session, ilist_token, ilist_payload):
    fake = fake_ilist(pages=[[ilist_payload(1), {"Id": 0}, ilist_payload(2)]])

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="full"))

    assert result.status == "completed"
    assert (result.stats.new, result.stats.failed) == (2, 1)
    assert result.errors == ["Property 0: iList payload is missing a valid Id"]
    assert db_session.query(models.Property).count() == 2


def test_only_failures_mark_session_failed(fake_ilist, db_session, ilist_token):
    fake = fake_ilist(pages=[[{"Id": None}]])

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="full"))

    assert result.success is False
    assert result.status == "failed"
    assert db_session.query(models.SyncSession).one().status == "failed"


def test_non_object_record_fails_alone(fake_ilist, db_session, ilist_token, ilist_payload):
    fake = fake_ilist(pages=[[ilist_payload(1), None, ilist_payload(3)]])

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="full"))

    assert result.status == "completed"
    assert (result.stats.total, result.stats.new, result.stats.failed) == (3, 2, 1)
    assert result.errors == ["Property None: record is not an object"]
    session = db_session.query(models.SyncSession).one()
    failed = [r for r in session.api_responses if r["action"] == "record_failed"]
    assert failed == [
        {"action": "record_failed", "ilist_id": None, "deleted": False, "error": "Property None: record is not an object"}
    ]


def test_unexpected_error_records_failed_session_and_reraises(
    fake_ilist, db_session, ilist_token, ilist_payload, monkeypatch
):
    def _boom(*_args, **_kwargs):
        raise RuntimeError("mapper exploded")

    monkeypatch.setattr("app.services.ilist_sync.upsert_property_from_ilist", _boom)
    fake = fake_ilist(pages=[[ilist_payload(1)]])

    with pytest.raises(RuntimeError, match="mapper exploded"):
        _service(fake).perform_sync(db_session, SyncOptions(sync_type="full", triggered_by="admin-1"))

    db_session.rollback()
    session = db_session.query(models.SyncSession).one()
    assert session.status == "failed"
    assert session.sync_type == "full"
    assert session.triggered_by == "admin-1"
    assert session.error_message == "mapper exploded"
    assert session.error_details["error_type"] == "RuntimeError"
    assert session.completed_at is not None
    assert db_session.query(models.Property).count() == 0


def test_connection_failure_aborts_and_keeps_failed_session(fake_ilist, db_session, ilist_token):
    fake = fake_ilist(connected=False)

    with pytest.raises(SyncAbortedError, match="Failed to connect to iList API") as exc_info:
        _service(fake).perform_sync(db_session, SyncOptions(sync_type="full"))

    db_session.rollback()
    session = db_session.query(models.SyncSession).one()
    assert str(session.id) == exc_info.value.session_id
    assert session.status == "failed"
    assert session.error_message == "Failed to connect to iList API"
    assert session.completed_at is not None


def test_fetch_failure_aborts_with_provider_details(fake_ilist, db_session, ilist_token):
    error = ProviderError("iList error 500", status_code=500, endpoint="/api/properties", method="POST")
    fake = fake_ilist(fetch_error=error)

    with pytest.raises(SyncAbortedError) as exc_info:
        _service(fake).perform_sync(db_session, SyncOptions(sync_type="full"))

    assert str(exc_info.value) == "Failed to fetch properties from iList: iList error 500"
    assert exc_info.value.details["status_code"] == 500


def test_deleted_fetch_failure_does_not_abort(fake_ilist, db_session, ilist_token, ilist_payload):
    error = ProviderError("iList error 502", status_code=502)
    fake = fake_ilist(pages=[[ilist_payload(1)]], deleted_error=error)

    result = _service(fake).perform_sync(db_session, SyncOptions(sync_type="full", include_deleted=True))

    assert result.status == "completed"
    assert result.errors == ["Deleted properties sync: iList error 502"]


def test_missing_configuration_is_rejected_before_any_session(fake_ilist, db_session, monkeypatch):
    monkeypatch.setattr(settings, "ilist_auth_token", None)

    with pytest.raises(HTTPException) as exc_info:
        _service(fake_ilist()).perform_sync(db_session, SyncOptions())

    assert exc_info.value.status_code == 400
    assert db_session.query(models.SyncSession).count() == 0


def test_request_token_overrides_stored_configuration(fake_ilist, db_session, ilist_token):
    IListConfigService().save_token(db_session, auth_token="stored-token", base_url="https://crm.test/")
    seen: list = []

    _service(fake_ilist(), seen).perform_sync(db_session, SyncOptions(auth_token="one-off"))
    _service(fake_ilist(), seen).perform_sync(db_session, SyncOptions())

    assert [(r.auth_token, r.source) for r in seen] == [("one-off", "request"), ("stored-token", "database")]
    assert seen[1].base_url == "https://crm.test"


def test_resolve_last_sync_date_uses_latest_completed_run(fake_ilist, db_session):
    service = IListSyncService(client_factory=lambda *_: fake_ilist())
    assert service.resolve_last_sync_date(db_session) is None

    done = open_session(db_session, sync_type=models.SyncType.full)
    finalize_session(db_session, done, status=models.SyncStatus.completed)
    failed = open_session(db_session, sync_type=models.SyncType.incremental)
    finalize_session(db_session, failed, status=models.SyncStatus.failed)
    other = open_session(db_session, sync_type=models.SyncType.csv_import)
    finalize_session(db_session, other, status=models.SyncStatus.completed)

    last = service.resolve_last_sync_date(db_session)
    assert last is not None
    assert last.tzinfo is not None
    assert abs((last - done.completed_at).total_seconds()) < 1


def test_sync_single_property(fake_ilist, db_session, ilist_token, ilist_payload):
    fake = fake_ilist(by_id={55: ilist_payload(55)})
    service = _service(fake)

    prop, created = service.sync_single_property(db_session, ilist_id=55)
    assert created is True
    assert prop.ilist_id == 55

    with pytest.raises(HTTPException) as exc_info:
        service.sync_single_property(db_session, ilist_id=56)
    assert exc_info.value.detail == "Property 56 not found in iList"


def test_sync_lookup_data_upserts_rows(fake_ilist, db_session, ilist_token):
    fake = fake_ilist(
        lookups={"floors": [{"Id": 1, "Value": " Ισόγειο "}, {"Id": "x"}], "View": [{"Id": 3, "Value": "Θάλασσα"}]}
    )
    service = _service(fake)

    counts = service.sync_lookup_data(db_session, language_id=4)
    assert counts == {"floors": 1, "View": 1}

    fake.lookups = {"floors": [{"Id": 1, "Value": "Ground floor"}]}
    service.sync_lookup_data(db_session, language_id=4)

    floors = db_session.query(models.IListLookup).filter_by(lookup_type="floors").all()
    assert [(f.lookup_id, f.value) for f in floors] == [(1, "Ground floor")]
    sessions = db_session.query(models.SyncSession).filter_by(sync_type="lookups").all()
    assert len(sessions) == 2


def test_test_connection_saves_token_only_on_success(fake_ilist, db_session):
    good = IListSyncService(client_factory=lambda *_: fake_ilist(connected=True))
    bad = IListSyncService(client_factory=lambda *_: fake_ilist(connected=False))

    assert bad.test_connection(db_session, auth_token="nope") is False
    assert db_session.query(models.IListConfig).count() == 0

    assert good.test_connection(db_session, auth_token="yes") is True
    stored = db_session.query(models.IListConfig).one()
    assert stored.auth_token != "yes"
    assert IListConfigService().resolve(db_session).auth_token == "yes"


def test_get_sync_stats(fake_ilist, db_session, ilist_token, ilist_payload):
    service = _service(fake_ilist(pages=[[ilist_payload(1), ilist_payload(2, StatusID=2)]]))
    service.perform_sync(db_session, SyncOptions(sync_type="full"))

    stats = service.get_sync_stats(db_session)

    assert stats["total_active_properties"] == 1
    assert stats["is_healthy"] is True
    assert stats["latest_session"].sync_type == "full"
