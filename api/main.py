"""
api/main.py -- FastAPI application entry point for Nemesis.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests            -- one access log line per request
  2. ServerSessionMiddleware -- loads/commits the server-side session
  3. SlowAPIMiddleware       -- per-route limits from api.limiter (login)
  4. CORSMiddleware          -- CORS headers for allowed browser origins
  5. TrustedHostMiddleware   -- rejects unexpected Host headers
Starlette wraps each add_middleware() call around the previous ones, so the
last registered runs first.

Per-request flow for state-changing routes:
  session (middleware) -> CSRF (require_csrf) -> quota (enforce_api_rate_limit)
  -> role check -> handler.

Lifespan opens every store at startup and closes them at shutdown. A
background task purges expired session records once an hour.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from activity.store import ActivityStore
from api.limiter import limiter
from api.responses import error_response, success_response
from api.routes.v1.activity import router as activity_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.settings import router as settings_router
from api.routes.v1.uploads import router as uploads_router
from auth.sessions import ServerSessionMiddleware, SessionStore
from auth.store import UserStore
from cache.rate_limit import FileRateLimiter
from core.config import get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("nemesis.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired session records every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(60 * 60)
        removed = app.state.session_store.purge_expired()
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores on startup, close them on shutdown."""
    logger.info("Nemesis API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.session_store = SessionStore(_settings.database_url)
    app.state.activity = ActivityStore(_settings.database_url)
    app.state.rate_limiter = FileRateLimiter(Path(_settings.rate_limit_dir))
    app.state.upload_dir = Path(_settings.upload_dir)
    logger.info("Stores initialized (%s)", _settings.database_url.split("://", 1)[0])
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    app.state.session_store.close()
    app.state.activity.close()
    logger.info("Nemesis API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Nemesis API",
    description="Accounts, sessions, uploads and site settings for the Nemesis website.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH"],
    allow_headers=["Content-Type", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    ServerSessionMiddleware,
    cookie_name=_settings.session_cookie_name,
    max_age=_settings.session_expire_seconds,
    secure=_settings.secure_cookies,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(uploads_router, prefix="/api/v1", tags=["Uploads"])
app.include_router(settings_router, prefix="/api/v1", tags=["Settings"])
app.include_router(activity_router, prefix="/api/v1", tags=["Activity"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {"success", "message", "data"} envelope.
# Validation problems are 400 with the failing fields; infrastructure
# failures are logged with a traceback and reported generically.
# ---------------------------------------------------------------------------


def _field_name(loc: tuple) -> str:
    # ("body", "email") -> "email"; ("query", "page") -> "page"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header", "cookie")]
    return ".".join(parts) or "request"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 listing each failing field once with its first error message."""
    fields: dict[str, str] = {}
    for error in exc.errors():
        name = _field_name(tuple(error.get("loc", ())))
        if error.get("type") == "missing":
            message = f"{name[:1].upper()}{name[1:]} is required"
        else:
            message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
        fields.setdefault(name, message)
    return error_response("Validation failed.", status_code=400, data={"fields": fields})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a slowapi limit (login) is exceeded."""
    retry_after = exc.limit.limit.get_expiry()
    return error_response("Too many requests.", status_code=429, headers={"Retry-After": str(retry_after)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap HTTPException (from routes, dependencies and routing 404/405) in the envelope."""
    return error_response(str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures: full detail to the log, nothing to the client."""
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return error_response("An unexpected error occurred.", status_code=500)


@app.exception_handler(OSError)
async def filesystem_error_handler(request: Request, exc: OSError) -> JSONResponse:
    logger.exception("Filesystem error on %s %s", request.method, request.url.path)
    return error_response("An unexpected error occurred.", status_code=500)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response("An unexpected error occurred.", status_code=500)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router state.
# Not rate limited -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> JSONResponse:
    """Return liveness, version and a database round-trip check."""
    database = "ok"
    try:
        request.app.state.user_store.count_users()
    except SQLAlchemyError:
        logger.exception("Health check database query failed")
        database = "error"
    return success_response(
        "OK",
        {"status": "healthy", "version": VERSION, "components": {"app": "ok", "database": database}},
    )
