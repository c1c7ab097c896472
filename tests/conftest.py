from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm
from sqlalchemy.orm import Session

# --- Test auth material (must be defined before app import/settings init) ---
TEST_KID = "test-signing-key"
AUTH_ISSUER = "http://127.0.0.1:8765/auth/v1"
AUTH_AUDIENCE = "authenticated"
AUTH_JWKS_URL = f"{AUTH_ISSUER}/.well-known/jwks.json"

_private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
PRIVATE_KEY_PEM = _private_key.private_bytes(
    encoding=serialization.Encoding.PEM,
    format=serialization.PrivateFormat.PKCS8,
    encryption_algorithm=serialization.NoEncryption(),
)
PUBLIC_JWK = json.loads(RSAAlgorithm.to_jwk(_private_key.public_key()))
PUBLIC_JWK["kid"] = TEST_KID
PUBLIC_JWK["alg"] = "RS256"
PUBLIC_JWK["use"] = "sig"
JWKS_PAYLOAD = {"keys": [PUBLIC_JWK]}

CRON_SECRET = "test-cron-secret"
WEBHOOK_SECRET = "test-webhook-secret"

# --- Force test settings early (before app import) ---
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("JSON_LOGS", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

os.environ.setdefault("TOKEN_CRYPTO_LOCAL_KEY", "5pq6kEUS_UIk1_4qatN-Lx42s3e362VNq5CgyI4LAZU=")
os.environ.setdefault("CRON_SECRET", CRON_SECRET)
os.environ.setdefault("WEBHOOK_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("ILIST_BASE_URL", "https://ilist.test")

os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("CELERY_TASK_EAGER_PROPAGATES", "true")

os.environ.setdefault("AUTH_ISSUER", AUTH_ISSUER)
os.environ.setdefault("AUTH_AUDIENCE", AUTH_AUDIENCE)
os.environ.setdefault("AUTH_JWKS_URL", AUTH_JWKS_URL)
os.environ.setdefault("AUTH_JWT_ALGORITHMS", '["RS256"]')
# Keep auth-expiry tests deterministic: avoid leeway masking short-expired tokens.
os.environ["AUTH_CLOCK_SKEW_SECONDS"] = "0"

from app.api.deps import get_db  # noqa: E402
from app.db.base import SessionLocal, engine  # noqa: E402
from app.db.models import Base  # noqa: E402
from app.main import create_app  # noqa: E402
from app.providers.base import ProviderError, ProviderRequestLog  # noqa: E402


class _JWKSHandler(BaseHTTPRequestHandler):
    def do_GET(self):  # noqa: N802
        if self.path == "/auth/v1/.well-known/jwks.json":
            body = json.dumps(JWKS_PAYLOAD).encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
            return

        self.send_response(404)
        self.end_headers()

    def log_message(self, *_args):
        return


@pytest.fixture(scope="session", autouse=True)
def jwks_server() -> Iterator[None]:
    server = HTTPServer(("127.0.0.1", 8765), _JWKSHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    time.sleep(0.05)

    try:
        yield
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)


@pytest.fixture()
def db_session() -> Iterator[Session]:
    # One in-memory connection (StaticPool); tables are rebuilt for every test.
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture()
def app(db_session: Session):
    application = create_app()

    def _override_get_db() -> Iterator[Session]:
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    application.dependency_overrides[get_db] = _override_get_db
    return application


@pytest.fixture()
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def sign_jwt():
    def _sign_jwt(
        *,
        sub: str,
        iss: str = AUTH_ISSUER,
        aud: str = AUTH_AUDIENCE,
        exp_delta_seconds: int = 3600,
        kid: str = TEST_KID,
        extra_claims: dict | None = None,
    ) -> str:
        now = datetime.now(tz=timezone.utc)
        payload = {
            "sub": sub,
            "iss": iss,
            "aud": aud,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=exp_delta_seconds)).timestamp()),
        }
        if extra_claims:
            payload.update(extra_claims)
        return jwt.encode(payload, PRIVATE_KEY_PEM, algorithm="RS256", headers={"kid": kid})

    return _sign_jwt


@pytest.fixture()
def headers(sign_jwt):
    def _headers(role: str = "agent", *, sub: str = "user-1") -> dict[str, str]:
        token = sign_jwt(sub=sub, extra_claims={"app_metadata": {"role": role}, "role": "authenticated"})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def ilist_payload():
    def _payload(ilist_id: int = 1001, **overrides) -> dict:
        payload = {
            "Id": ilist_id,
            "Category_ID": 1,
            "SubCategory_ID": 3,
            "Aim_ID": 1,
            "CustomCode": f"REF-{ilist_id}",
            "Price": 250000,
            "SqrMeters": 85,
            "Rooms": 2,
            "Bathrooms": 1,
            "Area_ID": 2011,
            "SubArea_ID": 4,
            "Latitude": 37.98,
            "Longitude": 23.72,
            "PostalCode": "10558",
            "EnergyClass_ID": 3,
            "StatusID": 1,
            "isSync": True,
            "SendDate": "2026-03-01T09:00:00Z",
            "UpdateDate": "2026-03-01T10:00:00Z",
            "Characteristics": [
                {"Id": 297, "Language_Id": 4, "Title": "Τίτλος", "Value": "Sea view flat", "LookupType": ""},
                {
                    "Id": 299,
                    "Language_Id": 4,
                    "Title": "Επιπλέον κείμενο (ΧΕ)",
                    "Value": "Bright, renovated",
                    "LookupType": "",
                },
            ],
            "Images": [{"Id": 1, "OrderNum": 1, "Url": "https://img.test/1.jpg", "ThumbUrl": None}],
            "Partner": {"Id": 9, "Firstname": "Maria", "Lastname": "P.", "Email": "m@agency.test", "Phone": "210"},
        }
        payload.update(overrides)
        return payload

    return _payload


class FakeIListClient:
    def __init__(
        self,
        *,
        connected: bool = True,
        pages: list[list[dict]] | None = None,
        deleted_pages: list[list[dict]] | None = None,
        fetch_error: ProviderError | None = None,
        deleted_error: ProviderError | None = None,
        by_id: dict[int, dict] | None = None,
        lookups: dict[str, list[dict]] | None = None,
        request_logger=None,
    ):
        self.connected = connected
        self.pages = pages or []
        self.deleted_pages = deleted_pages or []
        self.fetch_error = fetch_error
        self.deleted_error = deleted_error
        self.by_id = by_id or {}
        self.lookups = lookups or {}
        self.request_logger = request_logger
        self.calls: list[tuple] = []

    def test_connection(self) -> bool:
        if self.request_logger:
            self.request_logger(
                ProviderRequestLog(
                    endpoint="/api/properties",
                    method="GET",
                    status_code=200,
                    duration_ms=5,
                    error=None,
                    meta=None,
                )
            )
        return self.connected

    def _pages(self, pages, error):
        if error is not None:
            raise error
        yield from pages

    def full_sync(self, *, page_size=None):
        self.calls.append(("full", page_size))
        return self._pages(self.pages, self.fetch_error)

    def incremental_sync(self, since, *, page_size=None):
        self.calls.append(("incremental", since, page_size))
        return self._pages(self.pages, self.fetch_error)

    def deleted_properties(self, since=None, *, page_size=None):
        self.calls.append(("deleted", since, page_size))
        return self._pages(self.deleted_pages, self.deleted_error)

    def fetch_property_by_id(self, ilist_id):
        return self.by_id.get(ilist_id)

    def fetch_all_lookups(self, *, language_id=4):
        return self.lookups


@pytest.fixture()
def fake_ilist():
    return FakeIListClient
