from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from app.providers.base import ProviderError
from app.providers.ilist import IListClient


class _FakeResponse:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None, payload=None):
        self.status_code = status_code
        self.headers = headers or {}
        self._payload = payload if payload is not None else {"success": True, "data": []}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeClient:
    def __init__(self, responses, calls: list | None = None):
        self._responses = responses
        self.calls = calls if calls is not None else []

    def __enter__(self):
        return self

    def __exit__(self, *_args):
        return False

    def request(self, method, url, headers=None, json=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json})
        result = self._responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _install(monkeypatch, responses, calls=None, sleeps=None):
    monkeypatch.setattr(
        "app.providers.ilist.time.sleep", lambda s: sleeps.append(s) if sleeps is not None else None
    )
    monkeypatch.setattr("app.providers.ilist.httpx.Client", lambda timeout: _FakeClient(responses, calls))


def _client(**kwargs) -> IListClient:
    defaults = {"auth_token": "tok-123", "base_url": "https://ilist.test", "max_attempts": 2}
    defaults.update(kwargs)
    return IListClient(**defaults)


def test_client_requires_token():
    with pytest.raises(ValueError):
        IListClient(auth_token="")


def test_retries_429_and_honours_retry_after(monkeypatch):
    sleeps: list[float] = []
    responses = [
        _FakeResponse(429, headers={"Retry-After": "3"}),
        _FakeResponse(200, payload={"success": True, "data": [{"Id": 1}], "nextPage": None}),
    ]
    _install(monkeypatch, responses, sleeps=sleeps)

    client = _client()
    envelope = client.fetch_properties()

    assert envelope["data"] == [{"Id": 1}]
    assert sleeps == [3.0]
    assert client.last_request_meta["attempt"] == 2
    assert client.last_request_meta["attempts_total"] == 2


def test_network_error_exhausts_attempts(monkeypatch):
    _install(monkeypatch, [httpx.RequestError("boom"), httpx.RequestError("boom")])

    with pytest.raises(ProviderError) as exc_info:
        _client().fetch_properties()

    assert exc_info.value.status_code is None
    assert exc_info.value.meta["attempt"] == 2


def test_client_error_is_not_retried(monkeypatch):
    calls: list[dict] = []
    _install(monkeypatch, [_FakeResponse(401)], calls=calls)

    with pytest.raises(ProviderError) as exc_info:
        _client(max_attempts=3).fetch_properties()

    assert exc_info.value.status_code == 401
    assert len(calls) == 1


def test_unsuccessful_envelope_raises(monkeypatch):
    _install(monkeypatch, [_FakeResponse(200, payload={"success": False, "error": "bad token"})])

    with pytest.raises(ProviderError, match="bad token"):
        _client().fetch_properties()


def test_non_json_response_raises(monkeypatch):
    _install(monkeypatch, [_FakeResponse(200, payload=ValueError("not json"))])

    with pytest.raises(ProviderError, match="non-JSON"):
        _client().fetch_properties()


def test_request_shape_and_pagination(monkeypatch):
    calls: list[dict] = []
    responses = [
        _FakeResponse(200, payload={"success": True, "data": [{"Id": 1}], "nextPage": "/api/properties?page=2"}),
        _FakeResponse(200, payload={"success": True, "data": [{"Id": 2}], "nextPage": ""}),
    ]
    _install(monkeypatch, responses, calls=calls)

    since = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
    pages = list(_client().incremental_sync(since, page_size=10))

    assert pages == [[{"Id": 1}], [{"Id": 2}]]
    first, second = calls
    assert first["method"] == "POST"
    assert first["url"] == "https://ilist.test/api/properties"
    assert first["headers"]["authorization"] == "tok-123"
    assert first["headers"]["Details"] == "Full"
    assert first["json"] == {
        "StatusID": "1",
        "isSync": True,
        "UpdateDateFromUTC": "2026-03-01T10:00:00Z",
        "IncludeDeletedFromCrm": False,
        "PageSize": 10,
    }
    assert second["url"] == "https://ilist.test/api/properties?page=2"


def test_pagination_stops_on_repeated_next_page(monkeypatch):
    looping = {"success": True, "data": [{"Id": 1}], "nextPage": "https://ilist.test/api/properties?page=2"}
    _install(monkeypatch, [_FakeResponse(200, payload=looping) for _ in range(3)])

    pages = list(_client().full_sync())

    assert len(pages) == 2


def test_deleted_properties_request_body(monkeypatch):
    calls: list[dict] = []
    _install(monkeypatch, [_FakeResponse(200, payload={"success": True, "data": []})], calls=calls)

    list(_client().deleted_properties())

    assert calls[0]["json"]["StatusID"] == "2"
    assert calls[0]["json"]["IncludeDeletedFromCrm"] is True
    assert "UpdateDateFromUTC" not in calls[0]["json"]


def test_test_connection_reports_false_on_failure(monkeypatch):
    _install(monkeypatch, [_FakeResponse(500), _FakeResponse(500)])

    assert _client().test_connection() is False


def test_fetch_property_by_id_returns_none_on_404(monkeypatch):
    _install(monkeypatch, [_FakeResponse(404)])

    assert _client().fetch_property_by_id(42) is None


def test_fetch_all_lookups_tolerates_failing_types(monkeypatch):
    from app.providers import ilist

    monkeypatch.setattr(ilist, "LOOKUP_TYPES", ("floors", "View"))
    calls: list[dict] = []
    responses = [
        _FakeResponse(200, payload={"success": True, "data": [{"Id": 1, "Value": "Ισόγειο"}]}),
        _FakeResponse(403),
    ]
    _install(monkeypatch, responses, calls=calls)

    lookups = _client().fetch_all_lookups(language_id=4)

    assert lookups == {"floors": [{"Id": 1, "Value": "Ισόγειο"}], "View": []}
    assert calls[0]["url"] == "https://ilist.test/api/lookups/floors"
    assert calls[0]["headers"]["Language"] == "4"


def test_request_logger_receives_each_attempt(monkeypatch):
    logged = []
    _install(monkeypatch, [_FakeResponse(503), _FakeResponse(200)])

    _client(request_logger=logged.append).fetch_properties()

    assert [entry.status_code for entry in logged] == [503, 200]
    assert logged[0].error == "iList error 503"
    assert logged[1].error is None
