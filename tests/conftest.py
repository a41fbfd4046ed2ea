"""
tests/conftest.py -- Shared test fixtures for the gateway test suite.

This module provides:
  - engine / user_store / session_store / issuer: real components against a
    throwaway SQLite file per test (tmp_path), for unit tests
  - make_user: factory that inserts a user with a known password
  - client: TestClient over the real FastAPI app with a patched lifespan that
    wires components from test Settings (audit writes inline)
  - seeded: (client, user_store) with admin/admin123 and demo/demo123

Design: a file-backed SQLite DB under tmp_path rather than ':memory:' because
TestClient runs sync handlers in a thread pool; every thread must see the
same database, and a file gives each test a clean, isolated one.

DEBUG and ALLOWED_HOSTS must be set before any api/ import: api/main.py and
api/limiter.py read get_settings() at import time.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import app, close_state, init_state
from auth.models import User
from auth.sessions import SessionStore
from auth.store import UserStore, create_store_engine
from auth.tokens import TokenIssuer, hash_password
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"

# Rate limiting is exercised explicitly in test_api_auth.py; everywhere else
# it would turn lockout sequences into 429s.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_store_engine(f"sqlite:///{tmp_path / 'unit.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def session_store(engine: Engine) -> SessionStore:
    return SessionStore(engine)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET)


@pytest.fixture
def make_user(user_store: UserStore) -> Callable[..., User]:
    """Insert a user and return the stored record.

    Usage: make_user("alice", "alicepass", role="admin")
    """

    def _make(username: str, password: str = "password123", role: str = "user", email: str | None = None) -> User:
        user_id = user_store.create_user(
            User(
                username=username,
                email=email or f"{username}@example.com",
                role=role,
                hashed_password=hash_password(password),
            )
        )
        return user_store.get_by_id(user_id)

    return _make


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings):
    """Return a lifespan that builds real components from test Settings."""

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, settings, audit_background=False)
        yield
        close_state(app)

    return test_lifespan


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
    )


@pytest.fixture
def client(test_settings: Settings) -> Generator[TestClient, None, None]:
    app.router.lifespan_context = _patch_lifespan(test_settings)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def seeded(client: TestClient) -> tuple[TestClient, UserStore]:
    """Client plus the live UserStore, with the default admin and demo accounts."""
    store: UserStore = app.state.user_store
    store.create_user(
        User(username="admin", email="admin@example.com", role="admin", hashed_password=hash_password("admin123"))
    )
    store.create_user(
        User(username="demo", email="demo@example.com", role="user", hashed_password=hash_password("demo123"))
    )
    return client, store

