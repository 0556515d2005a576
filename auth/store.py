"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and site settings.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Tables:
  users          -- accounts. Never hard-deleted; is_active=0 deactivates.
  settings       -- site-wide key/value pairs with an optional description.
  user_sessions  -- login audit rows ("record session"). The session_token
                    column holds an HMAC of the session id, not the id itself.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are normalized (stripped, lowercased) on every write and lookup so
  the UNIQUE constraint cannot be bypassed by case variations.

Layer rule: no imports from api/, activity/, cache/ or uploads/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import User
from core.database import make_engine, now_iso
from core.pagination import Pagination, paginate

_SESSION_AUDIT_TTL = timedelta(hours=1)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("role", String(20), nullable=False, server_default="reader"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("bio", Text),
    Column("avatar", Text),
)

_settings = Table(
    "settings",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("setting_key", String(100), nullable=False, unique=True),
    Column("setting_value", Text),
    Column("description", Text),
    Column("updated_at", String(32), nullable=False),
)

_user_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("session_token", String(64), nullable=False),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, site settings and session audit rows.

    Usage:
        store = UserStore("sqlite:///nemesis.db")
        store.create_user(User(name="Ann", email="ann@example.com", hashed_password=hash_password("secret")))
        user = store.get_active_by_email("ann@example.com")
        store.close()
    """

    # Columns update_user() may touch. Anything else is a programming error.
    _MUTABLE_FIELDS: frozenset = frozenset({"name", "bio", "avatar", "role", "is_active", "hashed_password"})

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Registration checks email_exists() first for a friendly message, but
        the constraint is the real guard against two concurrent sign-ups.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=_normalize_email(user.email),
                    password=user.hashed_password,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    created_at=now_iso(),
                    bio=user.bio,
                    avatar=user.avatar,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def email_exists(self, email: str) -> bool:
        """Return True if any account (active or not) uses this email."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == _normalize_email(email))).fetchone()
        return row is not None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_active_by_email(self, email: str) -> User | None:
        """Look up an active user by email. Deactivated accounts are invisible here."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == _normalize_email(email)) & (_users.c.is_active == 1))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_active_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.is_active == 1))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, page: int = 1, per_page: int = 20) -> tuple[list[User], Pagination]:
        """Return one page of users ordered by id."""
        with self.engine.connect() as conn:
            rows, info = paginate(conn, _users.select().order_by(_users.c.id), page, per_page)
        return [_row_to_user(r) for r in rows], info

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, bio, avatar, role, is_active, hashed_password.
        Unknown fields raise ValueError rather than being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        values = dict(fields)
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        if "hashed_password" in values:
            values["password"] = values.pop("hashed_password")
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def count_active_with_role(self, role: str) -> int:
        """Used by PATCH /users/{id} to keep at least one active editor."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.role == role) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Site settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        """Return the stored value for key, or default when the key is unset."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_settings.c.setting_value).where(_settings.c.setting_key == key)).fetchone()
        return row.setting_value if row is not None else default

    def get_setting_record(self, key: str) -> dict | None:
        """Return {key, value, description, updated_at} or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_settings.select().where(_settings.c.setting_key == key)).fetchone()
        if row is None:
            return None
        return {
            "key": row.setting_key,
            "value": row.setting_value,
            "description": row.description,
            "updated_at": row.updated_at,
        }

    def set_setting(self, key: str, value: str, description: str | None = None) -> None:
        """Insert or overwrite a setting.

        UPDATE first, INSERT when no row matched. Both statements run in one
        transaction. Two first-time writers racing on the same key end with
        one IntegrityError from the UNIQUE constraint, never a duplicate row.
        """
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _settings.update()
                .where(_settings.c.setting_key == key)
                .values(setting_value=value, description=description, updated_at=now)
            )
            if result.rowcount == 0:
                conn.execute(
                    _settings.insert().values(
                        setting_key=key, setting_value=value, description=description, updated_at=now
                    )
                )

    # ------------------------------------------------------------------
    # Session audit
    # ------------------------------------------------------------------

    def record_session(self, user_id: int, session_token: str, ip_address: str = "", user_agent: str = "") -> int:
        """Write a user_sessions audit row expiring one hour from now.

        session_token should already be digested (see auth.tokens.hash_session_token);
        this table is readable by anyone with DB access.
        """
        now = datetime.now(timezone.utc)
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_sessions.insert().values(
                    user_id=user_id,
                    session_token=session_token,
                    ip_address=ip_address[:45],
                    user_agent=user_agent,
                    created_at=now.isoformat(),
                    expires_at=(now + _SESSION_AUDIT_TTL).isoformat(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_sessions(self, user_id: int) -> list[dict]:
        """Return a user's audit rows, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _user_sessions.select()
                .where(_user_sessions.c.user_id == user_id)
                .order_by(_user_sessions.c.id.desc())
            ).fetchall()
        return [
            {
                "id": r.id,
                "user_id": r.user_id,
                "session_token": r.session_token,
                "ip_address": r.ip_address,
                "user_agent": r.user_agent,
                "created_at": r.created_at,
                "expires_at": r.expires_at,
            }
            for r in rows
        ]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.password,
        role=row.role,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        bio=row.bio,
        avatar=row.avatar,
    )
