"""
core/pagination.py -- LIMIT/OFFSET pagination over SQLAlchemy Core selects.

The total is counted by wrapping the caller's select in a subquery, so any
WHERE clause on the original statement applies to the count as well.

Usage:
    with engine.connect() as conn:
        rows, page_info = paginate(conn, users.select().order_by(users.c.id), page=2, per_page=20)
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from sqlalchemy import func, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select


@dataclass
class Pagination:
    current_page: int
    per_page: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    def to_dict(self) -> dict:
        return asdict(self)


def build_pagination(total: int, page: int, per_page: int) -> Pagination:
    """Compute page metadata. page is clamped to >= 1 but not to total_pages,
    so an out-of-range page yields an empty result with has_next=False."""
    if per_page < 1:
        raise ValueError("per_page must be at least 1")
    page = max(1, page)
    total_pages = math.ceil(total / per_page)
    return Pagination(
        current_page=page,
        per_page=per_page,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def paginate(conn: Connection, stmt: Select, page: int = 1, per_page: int = 10) -> tuple[list, Pagination]:
    """Run stmt for one page and return (rows, Pagination)."""
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = conn.execute(count_stmt).scalar() or 0
    info = build_pagination(total, page, per_page)
    offset = (info.current_page - 1) * per_page
    rows = conn.execute(stmt.limit(per_page).offset(offset)).fetchall()
    return rows, info
