"""
tests/test_session_manager.py -- Unit tests for auth/manager.py SessionManager.

Covers:
  - login success writes user_id, user_name, user_role and stamps last_login
  - login failure (wrong password, unknown email, deactivated) leaves the
    session untouched
  - logout clears identity and CSRF token; safe with no login
  - get_current_user re-reads the account (deactivation and role change apply
    to an open session)
  - has_role / is_editor / is_author
  - authenticate_user and password helpers in auth/tokens.py
"""

from __future__ import annotations

import pytest

from auth.manager import SessionManager
from auth.models import User
from auth.sessions import Session
from auth.tokens import authenticate_user, hash_password, hash_session_token, verify_password

PASSWORD = "secret123"


@pytest.fixture
def user(user_store) -> User:
    uid = user_store.create_user(
        User(name="Ann", email="ann@example.com", role="author", hashed_password=hash_password(PASSWORD))
    )
    return user_store.get_by_id(uid)


@pytest.fixture
def manager(user_store) -> SessionManager:
    return SessionManager(user_store, Session("initial", {"csrf_token": "tok"}))


def test_login_sets_identity_keys(manager, user, user_store):
    assert manager.login("ann@example.com", PASSWORD) is True
    assert manager.session["user_id"] == user.id
    assert manager.session["user_name"] == "Ann"
    assert manager.session["user_role"] == "author"
    assert manager.session["csrf_token"] == "tok"
    assert manager.session.previous_id == "initial"
    assert user_store.get_by_id(user.id).last_login is not None


def test_login_email_is_case_insensitive(manager, user):
    assert manager.login("  ANN@Example.com ", PASSWORD) is True


@pytest.mark.parametrize(
    "email, password",
    [("ann@example.com", "wrong-password"), ("nobody@example.com", PASSWORD)],
)
def test_login_failure_leaves_session_untouched(manager, user, email, password):
    assert manager.login(email, password) is False
    assert manager.is_logged_in() is False
    assert manager.session.modified is False
    assert manager.session.id == "initial"


def test_deactivated_account_cannot_log_in(manager, user, user_store):
    user_store.update_user(user.id, is_active=False)
    assert manager.login("ann@example.com", PASSWORD) is False
    assert manager.is_logged_in() is False


def test_logout_clears_identity_and_csrf(manager, user):
    manager.login("ann@example.com", PASSWORD)
    manager.logout()
    assert manager.is_logged_in() is False
    assert manager.get_current_user() is None
    assert "user_id" not in manager.session
    assert "csrf_token" not in manager.session


def test_logout_without_login_is_harmless(manager):
    manager.logout()
    manager.logout()
    assert manager.is_logged_in() is False


def test_get_current_user_returns_live_account(manager, user, user_store):
    manager.login("ann@example.com", PASSWORD)
    user_store.update_user(user.id, role="editor")
    current = manager.get_current_user()
    assert current.id == user.id
    assert current.role == "editor"
    assert manager.is_editor() is True
    assert manager.is_author() is False


def test_get_current_user_after_deactivation_drops_identity(manager, user, user_store):
    manager.login("ann@example.com", PASSWORD)
    user_store.update_user(user.id, is_active=False)
    assert manager.get_current_user() is None
    assert manager.is_logged_in() is False
    assert manager.session["csrf_token"] == "tok"


def test_has_role_without_login(manager):
    assert manager.has_role("reader", "author", "editor") is False


# ---------------------------------------------------------------------------
# auth/tokens.py
# ---------------------------------------------------------------------------


def test_verify_password_round_trip():
    hashed = hash_password("hunter22")
    assert hashed != "hunter22"
    assert verify_password("hunter22", hashed) is True
    assert verify_password("hunter23", hashed) is False


def test_verify_password_malformed_hash_is_false():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_authenticate_user_ignores_inactive(user_store, user):
    assert authenticate_user(user_store, "ann@example.com", PASSWORD).id == user.id
    user_store.update_user(user.id, is_active=False)
    assert authenticate_user(user_store, "ann@example.com", PASSWORD) is None


def test_hash_session_token_is_deterministic_and_opaque():
    digest = hash_session_token("session-id")
    assert digest == hash_session_token("session-id")
    assert digest != hash_session_token("other-id")
    assert len(digest) == 64
    assert "session-id" not in digest
