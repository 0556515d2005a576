"""
tests/conftest.py -- Shared test fixtures for Nemesis integration tests.

This module provides:
  - db_url: a fresh named shared-memory SQLite URI per test
  - _make_test_stores(): UserStore / SessionStore / ActivityStore on that URI
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - client: TestClient (with its own cookie jar) against the patched app
  - make_user / login_as / csrf_headers helpers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Environment must be set before any core/auth import:
  DEBUG             -- get_settings() auto-generates SECRET_KEY
  ALLOWED_HOSTS     -- TrustedHostMiddleware must accept "testserver"
  LOGIN_RATE_LIMIT  -- the slowapi login limit is read at import time
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from activity.store import ActivityStore
from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import hash_password
from cache.rate_limit import FileRateLimiter

DEFAULT_PASSWORD = "secret123"
COOKIE_NAME = "nemesis_session"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url() -> str:
    """A database name no other test uses."""
    return f"sqlite:///file:test_nemesis_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_stores(url: str) -> tuple[UserStore, SessionStore, ActivityStore]:
    return UserStore(url), SessionStore(url), ActivityStore(url)


def _patch_lifespan(
    user_store: UserStore,
    session_store: SessionStore,
    activity: ActivityStore,
    tmp_path: Path,
):
    """Return an async context manager that replaces the real lifespan.

    Uploads and rate-limit records go under tmp_path. The purge_task is a
    long-sleeping coroutine (a real asyncio.Task is needed for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.activity = activity
        app.state.rate_limiter = FileRateLimiter(tmp_path / "ratelimit")
        app.state.upload_dir = tmp_path / "uploads"
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores(db_url) -> Generator[tuple[UserStore, SessionStore, ActivityStore], None, None]:
    user_store, session_store, activity = _make_test_stores(db_url)
    yield user_store, session_store, activity
    user_store.close()
    session_store.close()
    activity.close()


@pytest.fixture
def user_store(stores) -> UserStore:
    return stores[0]


@pytest.fixture
def client(stores, tmp_path) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores.

    Function-scoped: the cookie jar (and therefore the session) starts empty
    in every test.
    """
    user_store, session_store, activity = stores
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(user_store, session_store, activity, tmp_path)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture
def make_user(user_store):
    """Factory: make_user(role="editor", email=..., is_active=True) -> User."""

    def _make(
        role: str = "reader",
        email: str | None = None,
        name: str = "Test User",
        password: str = DEFAULT_PASSWORD,
        is_active: bool = True,
    ) -> User:
        email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
        user = User(
            name=name,
            email=email,
            role=role,
            hashed_password=hash_password(password),
            is_active=is_active,
        )
        user_id = user_store.create_user(user)
        return user_store.get_by_id(user_id)

    return _make


def fetch_csrf(client: TestClient) -> str:
    resp = client.get("/api/v1/auth/csrf")
    assert resp.status_code == 200
    return resp.json()["data"]["csrf_token"]


def csrf_headers(client: TestClient) -> dict[str, str]:
    return {"X-CSRF-Token": fetch_csrf(client)}


def login_as(client: TestClient, user: User, password: str = DEFAULT_PASSWORD) -> str:
    """Log the client in and return the CSRF token to use afterwards."""
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": user.email, "password": password},
        headers=csrf_headers(client),
    )
    assert resp.status_code == 200, resp.json()
    return resp.json()["data"]["csrf_token"]
