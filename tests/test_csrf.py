"""
tests/test_csrf.py -- Tests for auth/csrf.py.

Covers:
  - issue_token is stable within a session and 64 hex chars long
  - verify_token rejects empty, None, wrong and cross-session tokens
  - verify_token rejects everything when no token was issued
  - require_csrf through the API: missing/wrong header -> 403 envelope,
    form-field fallback for multipart bodies
"""

from __future__ import annotations

import re

from auth.csrf import CSRF_SESSION_KEY, issue_token, verify_token
from auth.sessions import Session
from conftest import fetch_csrf


def test_issue_token_is_stable_and_hex():
    session = Session()
    token = issue_token(session)
    assert re.fullmatch(r"[0-9a-f]{64}", token)
    assert issue_token(session) == token
    assert session[CSRF_SESSION_KEY] == token


def test_verify_token_accepts_matching_token():
    session = Session()
    token = issue_token(session)
    assert verify_token(session, token) is True


def test_verify_token_rejects_empty_and_none():
    session = Session()
    issue_token(session)
    assert verify_token(session, "") is False
    assert verify_token(session, None) is False


def test_verify_token_rejects_wrong_token():
    session = Session()
    token = issue_token(session)
    assert verify_token(session, token[:-1] + ("0" if token[-1] != "0" else "1")) is False


def test_verify_token_rejects_token_from_another_session():
    first, second = Session(), Session()
    issue_token(first)
    assert verify_token(second, issue_token(first)) is False
    issue_token(second)
    assert verify_token(second, first[CSRF_SESSION_KEY]) is False


def test_verify_token_without_issued_token_rejects_everything():
    session = Session()
    assert verify_token(session, "") is False
    assert verify_token(session, "anything") is False


# ---------------------------------------------------------------------------
# Through the API
# ---------------------------------------------------------------------------


def test_post_without_token_is_403(client):
    fetch_csrf(client)
    resp = client.post("/api/v1/auth/login", json={"email": "a@example.com", "password": "whatever"})
    assert resp.status_code == 403
    body = resp.json()
    assert body["success"] is False
    assert "CSRF" in body["message"]


def test_post_with_wrong_token_is_403(client):
    fetch_csrf(client)
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": "a@example.com", "password": "whatever"},
        headers={"X-CSRF-Token": "0" * 64},
    )
    assert resp.status_code == 403


def test_post_without_session_is_403(client):
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": "a@example.com", "password": "whatever"},
        headers={"X-CSRF-Token": "0" * 64},
    )
    assert resp.status_code == 403


def test_csrf_endpoint_returns_same_token_for_same_session(client):
    assert fetch_csrf(client) == fetch_csrf(client)


def test_form_field_is_accepted_for_form_bodies(client, make_user):
    from conftest import login_as

    author = make_user(role="author")
    token = login_as(client, author)
    resp = client.post(
        "/api/v1/uploads",
        data={"csrf_token": token},
        files={"file": ("pic.png", b"\x89PNG\r\n\x1a\n", "image/png")},
    )
    assert resp.status_code == 201, resp.json()
