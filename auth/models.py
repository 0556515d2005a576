"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these only own the shape.

Layer rule: no imports from api/, activity/, cache/ or uploads/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Ordered from least to most privileged. "editor" is the site administrator.
ROLES: tuple[str, ...] = ("reader", "author", "editor")


@dataclass
class User:
    """A registered site account.

    email is unique and stored lowercased; it is the login identifier.
    Accounts are never deleted -- is_active=False takes them out of
    authentication and out of get_current_user() on the very next request.
    """

    name: str
    email: str
    role: str = "reader"  # one of ROLES
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    last_login: str | None = None  # ISO 8601 UTC
    created_at: str | None = None
    bio: str | None = None
    avatar: str | None = None  # stored upload path
