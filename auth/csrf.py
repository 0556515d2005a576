"""
auth/csrf.py -- Per-session anti-forgery tokens.

Synchronizer token pattern: the token is stored server-side in the session
and echoed back by the client on every state-changing request, either in the
X-CSRF-Token header (JSON clients) or a csrf_token form field (multipart
uploads). The session cookie is samesite=lax as well; the token covers the
cases lax does not.

Comparison uses hmac.compare_digest so the time taken does not depend on how
many leading characters matched.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request

from auth.sessions import Session
from auth.tokens import generate_token

logger = logging.getLogger("nemesis.csrf")

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_FORM_FIELD = "csrf_token"

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})
_FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


def issue_token(session: Session) -> str:
    """Return the session's token, creating a 32-byte hex one on first use."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = generate_token(32)
        session[CSRF_SESSION_KEY] = token
    return token


def verify_token(session: Session, candidate: str | None) -> bool:
    """Constant-time check of candidate against the session's token.

    False when no token was ever issued for this session, or when candidate
    is empty or None.
    """
    expected = session.get(CSRF_SESSION_KEY)
    if not expected or not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


async def require_csrf(request: Request) -> None:
    """FastAPI dependency: reject state-changing requests without a valid token.

    Use as:
        @router.post("/thing", dependencies=[Depends(require_csrf)])
    """
    if request.method in _SAFE_METHODS:
        return
    candidate = request.headers.get(CSRF_HEADER)
    if not candidate:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(_FORM_CONTENT_TYPES):
            form = await request.form()
            value = form.get(CSRF_FORM_FIELD)
            candidate = value if isinstance(value, str) else None
    if not verify_token(request.state.session, candidate):
        logger.warning("CSRF check failed on %s %s", request.method, request.url.path)
        raise HTTPException(status_code=403, detail="Invalid or missing CSRF token.")
