"""
tests/conftest.py -- Shared test fixtures for the catalog test suite.

This module provides:
  - hasher / credential_store / session_store: isolated per-test stores
  - _make_test_stores(): file-backed SQLite stores for the HTTP fixtures
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - app_client: module-scoped TestClient with follow_redirects=False
  - client: function-scoped view of app_client with an empty cookie jar

Design: the HTTP fixtures use a SQLite file under pytest's tmp dir rather than
a shared-memory URI. Store calls run in the worker thread pool, and two
connections writing to one shared-cache memory DB fail fast with "table is
locked" instead of waiting; a file DB gives normal busy-wait semantics.

DEBUG and KDF_ROUNDS must be set before any auth/core import: get_settings()
auto-generates SECRET_KEY in dev mode, and a single KDF round keeps the suite
fast (the work factor is not what these tests exercise).
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("KDF_ROUNDS", "1")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import build_auth_core
from asgi import app
from auth.passwords import PasswordHasher
from auth.sessions import SessionStore
from auth.store import CredentialStore

TEST_USERNAME = "testuser"
TEST_PASSWORD = "testpass123"

# Rate limits are exercised by slowapi's own tests; here they would only make
# login-heavy modules flaky.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=1)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def credential_store(db_url: str, hasher: PasswordHasher) -> Generator[CredentialStore, None, None]:
    store = CredentialStore(db_url, hasher=hasher)
    yield store
    store.close()


@pytest.fixture
def session_store(db_url: str) -> Generator[SessionStore, None, None]:
    store = SessionStore(db_url, ttl=3600)
    yield store
    store.close()


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _make_test_stores(db_url: str) -> tuple[CredentialStore, SessionStore]:
    credentials = CredentialStore(db_url, hasher=PasswordHasher(rounds=1))
    sessions = SessionStore(db_url, ttl=3600)
    return credentials, sessions


def _patch_lifespan(credentials: CredentialStore, sessions: SessionStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_auth_core(app, credentials, sessions)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def app_client(tmp_path_factory) -> Generator[tuple[TestClient, CredentialStore], None, None]:
    """Yield (client, credential_store) with one registered test user.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations*, which are invisible once the client follows them.
    """
    db_path = tmp_path_factory.mktemp("http") / "auth.db"
    credentials, sessions = _make_test_stores(f"sqlite:///{db_path}")
    credentials.create(TEST_USERNAME, TEST_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(credentials, sessions)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, credentials

    sessions.close()
    credentials.close()


@pytest.fixture
def client(app_client: tuple[TestClient, CredentialStore]) -> TestClient:
    """The shared TestClient with its cookie jar emptied, so each test starts anonymous."""
    test_client, _ = app_client
    test_client.cookies.clear()
    return test_client
