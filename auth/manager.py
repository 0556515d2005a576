"""
auth/manager.py -- Login state for one request's session.

SessionManager binds an injected UserStore to a request-scoped Session.
There is no module-level "current session": every caller constructs one
from the objects it was handed (see auth/dependencies.get_session_manager).

Session keys written here:
  user_id, user_name, user_role -- always set together in one update()

get_current_user() never trusts user_role from the session for decisions. It
re-reads the account on every call so a role change or deactivation applies
to sessions that are already open.

Layer rule: no imports from api/, activity/, cache/ or uploads/.
"""

from __future__ import annotations

import logging

from auth.models import User
from auth.sessions import Session
from auth.store import UserStore
from auth.tokens import authenticate_user

logger = logging.getLogger("nemesis.auth")

_IDENTITY_KEYS = ("user_id", "user_name", "user_role")


class SessionManager:
    def __init__(self, store: UserStore, session: Session) -> None:
        self.store = store
        self.session = session

    def login(self, email: str, password: str) -> bool:
        """Authenticate and bind the account to this session.

        Returns False on unknown email, deactivated account or wrong password,
        without saying which. On success the session id is rotated, the three
        identity keys are written together and last_login is stamped.
        Other sessions of the same account are left alone.
        """
        user = authenticate_user(self.store, email, password)
        if user is None:
            logger.info("Failed login attempt")
            return False

        self.session.regenerate()
        self.session.update({"user_id": user.id, "user_name": user.name, "user_role": user.role})
        self.store.update_last_login(user.id)
        logger.info("User %d logged in", user.id)
        return True

    def logout(self) -> None:
        """Destroy all session state, CSRF token included. Safe without a session."""
        user_id = self.session.get("user_id")
        self.session.invalidate()
        if user_id:
            logger.info("User %s logged out", user_id)

    def is_logged_in(self) -> bool:
        return bool(self.session.get("user_id"))

    def get_current_user(self) -> User | None:
        """Return the live account for this session, or None.

        None when nobody is logged in or the account was deactivated after
        login. In the latter case the stale identity keys are dropped.
        """
        if not self.is_logged_in():
            return None
        user = self.store.get_active_by_id(self.session["user_id"])
        if user is None:
            for key in _IDENTITY_KEYS:
                self.session.pop(key)
        return user

    def has_role(self, *roles: str) -> bool:
        user = self.get_current_user()
        return user is not None and user.role in roles

    def is_editor(self) -> bool:
        return self.has_role("editor")

    def is_author(self) -> bool:
        return self.has_role("author")
