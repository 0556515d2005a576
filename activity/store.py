"""
activity/store.py -- Append-only activity log ("record activity").

Not to be confused with auth.store.UserStore.record_session(), which writes
login audit rows to user_sessions. The two are separate operations on
separate tables.

record_activity() is a side effect of other work (login, upload, settings
change). A database failure here is logged and swallowed so that it never
turns a successful action into a 500.

Usage:
    activity = ActivityStore("sqlite:///nemesis.db")
    activity.record_activity(user_id=3, action="upload", details="cover.png")
    entries, page_info = activity.list_activity(page=1, per_page=20)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.exc import SQLAlchemyError

from core.database import make_engine, now_iso
from core.pagination import Pagination, paginate

logger = logging.getLogger("nemesis.activity")

_metadata = MetaData()

_activity_log = Table(
    "activity_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL for anonymous actions
    Column("action", String(100), nullable=False),
    Column("details", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
)


@dataclass
class ActivityEntry:
    id: int
    user_id: int | None
    action: str
    details: str
    created_at: str

    def to_dict(self) -> dict:
        return asdict(self)


class ActivityStore:
    def __init__(self, db_url: str) -> None:
        self.engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def record_activity(self, user_id: int | None, action: str, details: str = "") -> bool:
        """Append one entry. Returns False (after logging) if the write failed."""
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _activity_log.insert().values(
                        user_id=user_id,
                        action=action,
                        details=details or "",
                        created_at=now_iso(),
                    )
                )
                conn.commit()
        except SQLAlchemyError:
            logger.exception("Error logging activity %r for user %s", action, user_id)
            return False
        return True

    def list_activity(
        self, page: int = 1, per_page: int = 20, user_id: int | None = None
    ) -> tuple[list[ActivityEntry], Pagination]:
        """Newest first, optionally filtered to one user."""
        stmt = _activity_log.select()
        if user_id is not None:
            stmt = stmt.where(_activity_log.c.user_id == user_id)
        stmt = stmt.order_by(_activity_log.c.id.desc())
        with self.engine.connect() as conn:
            rows, info = paginate(conn, stmt, page, per_page)
        return [_row_to_entry(r) for r in rows], info

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> ActivityEntry:
    return ActivityEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        details=row.details,
        created_at=row.created_at,
    )
