"""
api/limiter.py -- Request throttling for the API.

Two limiters, two jobs:

  limiter (slowapi, in-memory)
      Per-IP brute-force guard on POST /auth/login. Import this in api/main.py
      (to mount SlowAPIMiddleware) and in route modules (@limiter.limit()).
      A single shared instance is required: separate instances would each
      keep their own counters and never trigger.

  enforce_api_rate_limit (FileRateLimiter, cache/rate_limit.py)
      Fixed-window quota on API routes, persisted as one JSON file per key so
      it survives restarts and is shared by every worker on the host. Keyed by
      the logged-in user id, falling back to the client IP.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from cache.rate_limit import FileRateLimiter
from core.config import get_settings

logger = logging.getLogger("nemesis.api")

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def rate_limit_key(request: Request) -> str:
    session = getattr(request.state, "session", None)
    user_id = session.get("user_id") if session is not None else None
    if user_id:
        return f"user_{user_id}"
    return f"ip_{get_remote_address(request)}"


def enforce_api_rate_limit(request: Request) -> None:
    """FastAPI dependency: 429 once the caller's window quota is spent."""
    settings = get_settings()
    file_limiter: FileRateLimiter = request.app.state.rate_limiter
    key = rate_limit_key(request)
    window = settings.api_rate_limit_window
    if not file_limiter.check_and_consume(key, settings.api_rate_limit_requests, window):
        logger.warning("API rate limit exceeded for %s", key)
        raise HTTPException(
            status_code=429,
            detail="Too many requests.",
            headers={"Retry-After": str(file_limiter.retry_after(key, window))},
        )
