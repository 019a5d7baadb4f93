"""
tests/conftest.py -- Shared test fixtures for authgate.

This module provides:
  - codec:      CredentialCodec with cheap Argon2 parameters (fast tests)
  - store:      AuthStore on a private in-memory SQLite database
  - clock:      controllable UTC clock for expiry tests
  - sessions:   SessionManager wired to store, a fresh cache and the clock
  - alice:      a created user named 'alice' with password 'hunter22'
  - api_client: TestClient with a patched lifespan and isolated stores

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

LOGIN_RATE_LIMIT must be set before any api import so the login route does
not throttle the test suite.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.accounts import create_user
from auth.cache import SessionCache
from auth.credentials import Argon2Params, CredentialCodec
from auth.models import User
from auth.sessions import SessionManager
from auth.store import AuthStore
from core.config import Settings

CHEAP_PARAMS = Argon2Params(memory=1024, iterations=1, parallelism=2)
ALICE_PASSWORD = "hunter22"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def codec() -> CredentialCodec:
    return CredentialCodec(CHEAP_PARAMS)


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(store: AuthStore, codec: CredentialCodec, clock: FakeClock) -> SessionManager:
    return SessionManager(store, SessionCache(), codec, domain="example.test", lifetime=timedelta(days=7), clock=clock)


@pytest.fixture
def alice(store: AuthStore, codec: CredentialCodec) -> User:
    user, _secret, _uri = create_user(store, codec, "alice", ALICE_PASSWORD)
    return user


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: AuthStore, manager: SessionManager):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated database and cheap Argon2 parameters.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.store = store
        app.state.cache = manager.cache
        app.state.sessions = manager
        app.state.directory = None
        yield

    return test_lifespan


@pytest.fixture
def api_client(request) -> Generator[tuple[TestClient, SessionManager], None, None]:
    """Yield (client, session_manager) for gateway route tests.

    follow_redirects=False so tests can assert on redirect locations. Each
    test gets its own database, named after the test.
    """
    settings = Settings(debug=True, domain="example.test", db_url="sqlite://")
    db_name = re.sub(r"\W", "_", request.node.name)
    store = AuthStore(f"sqlite:///file:test_auth_{db_name}?mode=memory&cache=shared&uri=true")
    codec = CredentialCodec(CHEAP_PARAMS)
    manager = SessionManager(store, SessionCache(), codec, cookie_name=settings.cookie_name, domain=settings.domain)
    create_user(store, codec, "alice", ALICE_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(settings, store, manager)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, manager

    store.close()
