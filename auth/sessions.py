"""
auth/sessions.py -- Server-side sessions: persistence, request handle, middleware.

The browser only ever holds an opaque random id in an httpOnly cookie. The
data (user id, name, role, CSRF token) lives in the `sessions` table.

Pieces:
  Session                  -- request-scoped handle. Route code reads and writes
                              it like a dict; nothing touches the store until
                              the response is on its way out.
  SessionStore             -- SQLAlchemy Core repository for session records.
  ServerSessionMiddleware  -- loads the handle from the cookie into
                              request.state.session and commits it afterwards.

Lifecycle:
  A session record is created lazily on the first write (e.g. CSRF token
  issuance), rotated to a fresh id on login (regenerate) and removed on
  logout (invalidate) or once expires_at has passed. The timeout is idle
  time: any request that uses a live session pushes expires_at out again
  (at most once per TOUCH_INTERVAL seconds when nothing was written).

  Only new sessions are inserted. A loaded session is written back with an
  UPDATE; if its row is gone by then (logged out by a concurrent request),
  the request's changes are dropped and the cookie is cleared.

Layer rule: no imports from api/, activity/, cache/ or uploads/.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from sqlalchemy import Column, Float, MetaData, String, Table, Text
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.database import make_engine

logger = logging.getLogger("nemesis.sessions")

# Unmodified sessions refresh their expiry at most this often (seconds).
TOUCH_INTERVAL = 60

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("data", Text, nullable=False),  # JSON object
    Column("expires_at", Float, nullable=False),  # unix seconds
)


def new_session_id() -> str:
    """256 bits of randomness, URL-safe so it can go straight into a cookie."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Request-scoped handle
# ---------------------------------------------------------------------------


class Session:
    """Mutable view of one client's session for the duration of a request.

    `id` is None until the session has been persisted at least once.
    `previous_id` is set by regenerate() and invalidate(); the middleware
    deletes that record when it commits. `is_new` is True unless the handle
    was loaded from an existing record, and marks ids the middleware may
    insert rather than update.
    """

    def __init__(self, session_id: str | None = None, data: Mapping[str, Any] | None = None) -> None:
        self.id = session_id
        self.previous_id: str | None = None
        self.is_new = session_id is None
        self.modified = False
        self._data: dict[str, Any] = dict(data or {})

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.modified = True

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def update(self, values: Mapping[str, Any]) -> None:
        """Set several keys in one step. Readers never see a partial update."""
        self._data = {**self._data, **values}
        self.modified = True

    def pop(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            self.modified = True
        return self._data.pop(key, default)

    @property
    def data(self) -> dict[str, Any]:
        return dict(self._data)

    def regenerate(self) -> None:
        """Move the current data to a fresh id (session fixation defence)."""
        if self.id is not None and self.previous_id is None:
            self.previous_id = self.id
        self.id = new_session_id()
        self.is_new = True
        self.modified = True

    def invalidate(self) -> None:
        """Drop all data and schedule the stored record for deletion. Idempotent."""
        if self.id is not None and self.previous_id is None:
            self.previous_id = self.id
        self.id = None
        self.is_new = True
        self._data = {}
        self.modified = True


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for server-side session records.

    clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(self, db_url: str, clock: Callable[[], float] = time.time) -> None:
        self.engine = make_engine(db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    def load(self, session_id: str) -> dict | None:
        """Return the stored data, or None if missing, expired or unreadable."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        if row is None:
            return None
        if row.expires_at <= self._clock():
            self.delete(session_id)
            return None
        try:
            data = json.loads(row.data)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable session record")
            self.delete(session_id)
            return None
        return data if isinstance(data, dict) else None

    def insert(self, session_id: str, data: Mapping[str, Any], max_age: int) -> None:
        """Create a record that expires max_age seconds from now."""
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    data=json.dumps(dict(data)),
                    expires_at=self._clock() + max_age,
                )
            )

    def update(self, session_id: str, data: Mapping[str, Any], max_age: int) -> bool:
        """Replace an existing record's data and push its expiry out.

        Returns False when the record no longer exists; it is never re-created.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .values(data=json.dumps(dict(data)), expires_at=self._clock() + max_age)
            )
        return result.rowcount > 0

    def touch(self, session_id: str, max_age: int, interval: int = TOUCH_INTERVAL) -> bool:
        """Push expiry out to max_age from now if the last refresh is older than interval.

        Returns True only when the row was actually refreshed.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .where(_sessions.c.expires_at > now)
                .where(_sessions.c.expires_at < now + max_age - interval)
                .values(expires_at=now + max_age)
            )
        return result.rowcount > 0

    def delete(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete all expired records. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= self._clock()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class ServerSessionMiddleware(BaseHTTPMiddleware):
    """Attach a Session to every request and persist it after the handler runs.

    The SessionStore is looked up on app.state at request time (not captured
    at construction) so tests can swap it in through a patched lifespan.
    """

    def __init__(
        self,
        app,
        cookie_name: str = "nemesis_session",
        max_age: int = 3600,
        secure: bool = False,
    ) -> None:
        super().__init__(app)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    async def dispatch(self, request: Request, call_next) -> Response:
        store: SessionStore = request.app.state.session_store
        cookie_id = request.cookies.get(self.cookie_name)
        data = store.load(cookie_id) if cookie_id else None
        session = Session(cookie_id if data is not None else None, data)
        request.state.session = session

        response = await call_next(request)
        self._commit(store, session, response, had_cookie=cookie_id is not None)
        return response

    def _set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            self.cookie_name,
            value=session_id,
            max_age=self.max_age,
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )

    def _clear_cookie(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, httponly=True, samesite="lax", secure=self.secure)

    def _commit(self, store: SessionStore, session: Session, response: Response, had_cookie: bool) -> None:
        if session.previous_id is not None:
            store.delete(session.previous_id)

        if not session.modified:
            if session.id is None:
                # Cookie pointed at an expired or unknown record: stop resending it.
                if had_cookie:
                    self._clear_cookie(response)
            elif store.touch(session.id, self.max_age):
                self._set_cookie(response, session.id)
            return

        if not len(session):
            if session.id is not None:
                store.delete(session.id)
            if had_cookie:
                self._clear_cookie(response)
            return

        if session.id is None:
            session.id = new_session_id()
            session.is_new = True
        if session.is_new:
            store.insert(session.id, session.data, self.max_age)
        elif not store.update(session.id, session.data, self.max_age):
            logger.info("Session ended during the request; discarding its changes")
            session.invalidate()
            self._clear_cookie(response)
            return
        self._set_cookie(response, session.id)
