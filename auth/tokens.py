"""
auth/tokens.py -- Password hashing, random tokens and credential checks.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       brute-force expensive. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  Random tokens: secrets.token_hex(n) -- n random bytes, 2n hex chars. Used
       for CSRF tokens. Session ids use secrets.token_urlsafe (auth/sessions.py).

  Session audit digests: HMAC-SHA256(SECRET_KEY, session_id). The raw session
       id is a bearer credential, so the user_sessions table only ever sees
       the digest.

Layer rule: no imports from api/, activity/, cache/ or uploads/. Import from
core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("nemesis.auth")

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the API layer caps password
    length at 255 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch; bcrypt raises ValueError
    for those and the caller only cares about yes/no.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("nemesis_timing_dummy")


# ---------------------------------------------------------------------------
# Random tokens
# ---------------------------------------------------------------------------


def generate_token(length: int = 32) -> str:
    """Return `length` cryptographically random bytes, hex-encoded (2*length chars)."""
    return secrets.token_hex(length)


def hash_session_token(raw: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string."""
    return hmac.new(
        get_settings().secret_key.encode(),
        raw.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair against active accounts.

    Always runs bcrypt whether or not the account exists:
    - Unknown or deactivated email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure. Callers must not tell
    the client which of the two happened.
    """
    user = store.get_active_by_email(email)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
