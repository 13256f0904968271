"""
Riffle — Test Configuration (conftest.py)
===========================================

What:  Shared fixtures for the API tests and the offline sync tests.

Fixture overview:
    Server side:
    ├── api_db:       fresh journal tables in a throwaway SQLite file
    ├── test_client:  httpx AsyncClient talking to the FastAPI app (ASGITransport)
    └── make_token:   signs login tokens the way the login service does

    Offline side:
    ├── store:        LocalStore on a temp file
    ├── fake_api:     in-memory stand-in for JournalApiClient
    ├── connectivity, channel
    └── engine:       SyncEngine(store, fake_api)
"""

import os
import tempfile

# Settings are read at import time: environment first, then riffle imports
_TEST_DIR = tempfile.mkdtemp(prefix="riffle_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/riffle_test.db"
os.environ["JWT_SECRET"] = "test-only-signing-secret-0123456789abcdef"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RETRY_MAX_ATTEMPTS"] = "3"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["OFFLINE_DB_PATH"] = f"{_TEST_DIR}/riffle-offline.db"
os.environ["API_BASE_URL"] = "http://test"
os.environ["SYNC_PERIODIC_INTERVAL"] = "0"

from typing import Any, Dict, List, Mapping, Optional  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from riffle.config import settings  # noqa: E402
from riffle.exceptions import NetworkFailure, RemoteRejection  # noqa: E402
from riffle.offline.connectivity import ConnectivityObserver  # noqa: E402
from riffle.offline.notifier import BroadcastChannel  # noqa: E402
from riffle.offline.storage import LocalStore  # noqa: E402
from riffle.offline.sync_engine import SyncEngine  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Server fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_token():
    """Returns a function building a signed login token."""

    def _make(user_id: int = 1, subscription_status: Optional[str] = "free", **claims) -> str:
        payload = {
            "id": user_id,
            "email": f"angler{user_id}@example.com",
            "subscription_status": subscription_status,
            **claims,
        }
        return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    return _make


@pytest_asyncio.fixture
async def api_db():
    """Creates the journal tables before the test and drops them after."""
    from riffle.database import Base, create_tables, engine

    await create_tables()
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def test_client(api_db):
    """HTTP client routed straight into the FastAPI app."""
    from riffle.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ══════════════════════════════════════════════════════════════════════════
# Offline fixtures
# ══════════════════════════════════════════════════════════════════════════

class FakeJournalApi:
    """
    In-memory journal API.

    Entries whose title is listed in `reject` answer with a RemoteRejection;
    when `offline` is set every call raises NetworkFailure. While
    `lose_responses` is positive, a create is stored and then answered with
    NetworkFailure. Every call is recorded in `calls` as
    (method, title, idempotency_key).
    """

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.reject: Dict[str, tuple] = {}
        self.offline = False
        self.lose_responses = 0
        self._keys: Dict[str, int] = {}
        self._next_id = 100

    async def create_entry(self, payload: Mapping[str, Any], idempotency_key: Optional[str] = None) -> int:
        title = payload.get("title")
        self.calls.append(("create", title, idempotency_key))
        if self.offline:
            raise NetworkFailure()
        if title in self.reject:
            status, message = self.reject[title]
            raise RemoteRejection(message=message, status_code=status, body={"error": message})
        if idempotency_key and idempotency_key in self._keys:
            return self._keys[idempotency_key]
        self._next_id += 1
        self.entries.append({**payload, "id": self._next_id})
        if idempotency_key:
            self._keys[idempotency_key] = self._next_id
        if self.lose_responses > 0:
            self.lose_responses -= 1
            raise NetworkFailure()
        return self._next_id

    async def list_entries(self) -> List[Dict[str, Any]]:
        self.calls.append(("list", None, None))
        if self.offline:
            raise NetworkFailure()
        return [dict(entry) for entry in self.entries]

    @property
    def created_titles(self) -> List[str]:
        return [entry.get("title") for entry in self.entries]

    async def aclose(self) -> None:
        pass


@pytest_asyncio.fixture
async def store(tmp_path):
    """LocalStore on a temp file, closed after the test."""
    local = await LocalStore.open(str(tmp_path / "riffle-offline.db"))
    yield local
    await local.close()


@pytest.fixture
def fake_api():
    return FakeJournalApi()


@pytest.fixture
def connectivity():
    return ConnectivityObserver(initial_online=True)


@pytest.fixture
def channel():
    return BroadcastChannel()


@pytest.fixture
def engine(store, fake_api):
    return SyncEngine(store, fake_api)
