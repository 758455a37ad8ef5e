"""
Pytest fixtures for dnsguard tests.

Everything runs against an in-memory SQLite database and a fake Cloudflare
API served through ``httpx.MockTransport``; no network or PostgreSQL is
needed. The environment is prepared before the application is imported so
the module-level engine and scheduler stay disabled.
"""

from __future__ import annotations

import os

os.environ["DATABASE_URL"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DNSGUARD_ALLOW_INSECURE"] = "true"

import json  # noqa: E402
from collections import defaultdict  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from typing import Any, Generator  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from dnsguard.db.base import Base  # noqa: E402
from dnsguard.db.session import get_db  # noqa: E402
from dnsguard.deps import get_client_factory  # noqa: E402
from dnsguard.main import app  # noqa: E402
from dnsguard.models import audit_event as _audit_event  # noqa: E402, F401
from dnsguard.models import kv_document as _kv_document  # noqa: E402, F401
from dnsguard.models import settings as _settings  # noqa: E402, F401
from dnsguard.models.user import User  # noqa: E402
from dnsguard.services.cloudflare import CloudflareClient  # noqa: E402
from dnsguard.services.credentials import USER_TOKENS_PREFIX, Credential  # noqa: E402
from dnsguard.services.kv_store import KVStore  # noqa: E402

FAKE_API_BASE = "https://cf.test/client/v4"


def _sqlite_now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def _setup_sqlite_now(dbapi_conn, connection_record):
    dbapi_conn.create_function("NOW", 0, _sqlite_now)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


class FakeCloudflare:
    """In-memory stand-in for the Cloudflare v4 DNS record endpoints."""

    def __init__(self):
        self.zones: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []
        self.headers: list[dict[str, str]] = []
        # (method, record id or None) -> error message
        self.failures: dict[tuple[str, str | None], str] = {}
        self.fail_listing = False
        self._seq = 0

    def _next_id(self) -> str:
        self._seq += 1
        return f"rec-{self._seq}"

    def add(self, zone_id: str, **fields) -> dict[str, Any]:
        record = {"id": fields.pop("id", None) or self._next_id(), **fields}
        self.zones[zone_id].append(record)
        return record

    def records(self, zone_id: str) -> list[dict[str, Any]]:
        return self.zones[zone_id]

    def fail(self, method: str, record_id: str | None = None, message: str = "Injected failure"):
        self.failures[(method, record_id)] = message

    def client(self, credential: Credential | None = None) -> CloudflareClient:
        return CloudflareClient(
            credential or Credential(token="test-token"),
            base_url=FAKE_API_BASE,
            transport=httpx.MockTransport(self.handler),
        )

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "GET"]

    @staticmethod
    def _ok(result: Any, status: int = 200, result_info: dict | None = None) -> httpx.Response:
        body: dict[str, Any] = {"success": True, "errors": [], "messages": [], "result": result}
        if result_info is not None:
            body["result_info"] = result_info
        return httpx.Response(status, json=body)

    @staticmethod
    def _error(message: str, status: int = 400, code: int = 1004) -> httpx.Response:
        return httpx.Response(
            status,
            json={"success": False, "errors": [{"code": code, "message": message}], "result": None},
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/client/v4")
        parts = path.strip("/").split("/")
        self.calls.append((request.method, path))
        self.headers.append(dict(request.headers))

        if len(parts) < 3 or parts[0] != "zones" or parts[2] != "dns_records":
            return self._error("Unknown route", status=404, code=7003)

        zone_id = parts[1]
        record_id = parts[3] if len(parts) > 3 else None
        records = self.zones[zone_id]

        failure = self.failures.get((request.method, record_id))
        if failure is not None:
            return self._error(failure)

        if request.method == "GET" and record_id is None:
            if self.fail_listing:
                return self._error("Listing unavailable", status=500)
            page = int(request.url.params.get("page", "1"))
            per_page = int(request.url.params.get("per_page", "20"))
            total_pages = max(1, -(-len(records) // per_page))
            start = (page - 1) * per_page
            return self._ok(
                [dict(r) for r in records[start : start + per_page]],
                result_info={
                    "page": page,
                    "per_page": per_page,
                    "total_pages": total_pages,
                    "count": len(records[start : start + per_page]),
                    "total_count": len(records),
                },
            )

        if request.method == "POST" and record_id is None:
            body = json.loads(request.content)
            record = {"id": self._next_id(), **body}
            records.append(record)
            return self._ok(dict(record))

        index = next((i for i, r in enumerate(records) if r["id"] == record_id), None)
        if index is None:
            return self._error("Record does not exist.", status=404, code=81044)

        if request.method == "PUT":
            records[index] = {"id": record_id, **json.loads(request.content)}
            return self._ok(dict(records[index]))
        if request.method == "PATCH":
            records[index] = {**records[index], **json.loads(request.content)}
            return self._ok(dict(records[index]))
        if request.method == "DELETE":
            records.pop(index)
            return self._ok({"id": record_id})

        return self._error("Method not allowed", status=405, code=10000)


@pytest.fixture
def sync_db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _setup_sqlite_now)
    Base.metadata.create_all(engine)

    TestSession = sessionmaker(bind=engine)
    session = TestSession()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def kv(sync_db_session) -> KVStore:
    return KVStore(sync_db_session)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_cf() -> FakeCloudflare:
    return FakeCloudflare()


@pytest.fixture
def cf_client(fake_cf) -> Generator[CloudflareClient, None, None]:
    with fake_cf.client() as client:
        yield client


@pytest.fixture
def sync_client(sync_db_session, fake_cf):
    """Create test client with sync DB and fake provider overrides."""

    def override_get_db():
        yield sync_db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: fake_cf.client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db: Session, username: str, password: str, role: str = "user") -> User:
    from dnsguard.security import hash_password

    user = User(username=username, password_hash=hash_password(password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user(sync_db_session):
    """Create a regular user with a saved provider token."""
    user = _make_user(sync_db_session, "testuser", "testpassword")
    KVStore(sync_db_session).put(
        f"{USER_TOKENS_PREFIX}testuser", [{"id": 0, "token": "user-token"}]
    )
    return user


@pytest.fixture
def admin_user(sync_db_session):
    return _make_user(sync_db_session, "admin", "adminpassword", role="admin")


@pytest.fixture
def authenticated_client(sync_client, test_user):
    _ = test_user
    sync_client.post(
        "/login",
        data={"username": "testuser", "password": "testpassword"},
        follow_redirects=False,
    )
    return sync_client


@pytest.fixture
def admin_client(sync_client, admin_user, monkeypatch):
    _ = admin_user
    monkeypatch.setenv("CF_API_TOKEN", "env-admin-token")
    sync_client.post(
        "/login",
        data={"username": "admin", "password": "adminpassword"},
        follow_redirects=False,
    )
    return sync_client


@pytest.fixture
def sample_records():
    """A small zone as the provider would return it."""
    return [
        {"id": "a1", "type": "A", "name": "example.com", "content": "192.0.2.1", "ttl": 300, "proxied": True},
        {"id": "a2", "type": "A", "name": "www.example.com", "content": "192.0.2.2", "ttl": 300, "proxied": False},
        {"id": "mx1", "type": "MX", "name": "example.com", "content": "mail.example.com", "ttl": 3600, "proxied": False, "priority": 10},
        {"id": "txt1", "type": "TXT", "name": "example.com", "content": "v=spf1 -all", "ttl": 1, "proxied": False},
    ]
