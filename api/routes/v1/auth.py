"""
api/routes/v1/auth.py -- Session authentication and account endpoints.

Routes:
  GET   /api/v1/auth/csrf          -- issue (or return) the session's CSRF token
  POST  /api/v1/auth/register      -- create a reader account (CSRF)
  POST  /api/v1/auth/login         -- email/password login (CSRF, rate-limited)
  POST  /api/v1/auth/logout        -- destroy the session (CSRF when logged in)
  GET   /api/v1/auth/me            -- current account (requires auth)
  PATCH /api/v1/auth/me            -- edit own name/bio (requires auth, CSRF)
  GET   /api/v1/auth/users         -- paginated account list (editor)
  PATCH /api/v1/auth/users/{id}    -- change role / deactivate (editor, CSRF)

Security:
  POST /login is rate-limited per IP (settings.login_rate_limit).
  Login failures return one generic message for unknown email, deactivated
  account and wrong password alike. Cache-Control: no-store on login responses.
  The CSRF token survives login (session data moves to the new id), so a
  client can keep using the token it fetched before logging in.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from activity.store import ActivityStore
from api.limiter import limiter
from api.models import LoginRequest, ProfileUpdate, RegisterRequest, UserOut, UserPatch
from api.responses import error_response, success_response
from auth.csrf import issue_token, require_csrf
from auth.dependencies import get_current_user, get_session, get_session_manager, require_role
from auth.models import User
from auth.sessions import Session
from auth.store import UserStore
from auth.tokens import hash_password, hash_session_token
from core.config import get_settings

_settings = get_settings()

router = APIRouter()

# Site setting that overrides settings.self_registration_enabled when present.
REGISTRATION_SETTING_KEY = "self_registration_enabled"
_FALSEY = {"0", "false", "no", "off"}


def _registration_enabled(store: UserStore) -> bool:
    stored = store.get_setting(REGISTRATION_SETTING_KEY)
    if stored is None:
        return _settings.self_registration_enabled
    return stored.strip().lower() not in _FALSEY


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/csrf")
async def csrf_token(session: Session = Depends(get_session)) -> JSONResponse:
    """Return the CSRF token bound to this session, creating the session if needed."""
    return success_response("CSRF token issued.", {"csrf_token": issue_token(session)})


@router.post("/auth/register", status_code=201, dependencies=[Depends(require_csrf)])
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a reader account. Does not log the new user in."""
    user_store: UserStore = request.app.state.user_store
    activity: ActivityStore = request.app.state.activity

    if not _registration_enabled(user_store):
        raise HTTPException(status_code=403, detail="Registration is currently closed.")
    if user_store.email_exists(body.email):
        raise HTTPException(status_code=409, detail="Email already exists.")

    new_user = User(name=body.name, email=body.email, role="reader", hashed_password=hash_password(body.password))
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # Lost a race with a concurrent sign-up for the same email.
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    activity.record_activity(user_id, "register")
    created = user_store.get_by_id(user_id)
    return success_response("Registration successful.", UserOut.from_user(created).model_dump(), status_code=201)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", dependencies=[Depends(require_csrf)])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and bind the account to the session."""
    manager = get_session_manager(request)
    if not manager.login(body.email, body.password):
        resp = error_response("Invalid email or password.", status_code=401)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user = manager.get_current_user()
    session = manager.session
    user_store: UserStore = request.app.state.user_store
    activity: ActivityStore = request.app.state.activity
    user_store.record_session(
        user.id,
        hash_session_token(session.id),
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )
    activity.record_activity(user.id, "login")

    resp = success_response(
        "Login successful.",
        {"user": UserOut.from_user(user).model_dump(), "csrf_token": issue_token(session)},
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """End the session. Succeeds even when nobody is logged in.

    CSRF is only demanded when there is a login to destroy; an anonymous
    logout changes nothing.
    """
    manager = get_session_manager(request)
    user_id = manager.session.get("user_id")
    if user_id:
        await require_csrf(request)
        request.app.state.activity.record_activity(user_id, "logout")
    manager.logout()
    return success_response("Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me")
async def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    return success_response("Current user.", UserOut.from_user(current_user).model_dump())


@router.patch("/auth/me", dependencies=[Depends(require_csrf)])
async def update_me(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Edit the caller's own display name and bio."""
    user_store: UserStore = request.app.state.user_store
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update.")

    user_store.update_user(current_user.id, **updates)
    if "name" in updates:
        request.state.session["user_name"] = updates["name"]
    request.app.state.activity.record_activity(current_user.id, "profile_update", ", ".join(sorted(updates)))
    updated = user_store.get_by_id(current_user.id)
    return success_response("Profile updated.", UserOut.from_user(updated).model_dump())


# ---------------------------------------------------------------------------
# Account management (editor only)
# ---------------------------------------------------------------------------


@router.get("/auth/users")
async def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(require_role("editor")),
) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    users, info = user_store.list_users(page, per_page)
    return success_response(
        "Users retrieved.",
        {"items": [UserOut.from_user(u).model_dump() for u in users], "pagination": info.to_dict()},
    )


@router.patch("/auth/users/{user_id}", dependencies=[Depends(require_csrf)])
async def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_role("editor")),
) -> JSONResponse:
    """Change another account's role or active flag.

    Accounts are never deleted; is_active=false is the off switch. Guards:
      - an editor cannot deactivate or demote themselves
      - the last active editor cannot be deactivated or demoted
    """
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found.")

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update.")

    removes_editor = target.role == "editor" and (
        updates.get("is_active") is False or updates.get("role", "editor") != "editor"
    )
    if removes_editor and target.id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate or demote your own account.")
    if removes_editor and target.is_active and user_store.count_active_with_role("editor") <= 1:
        raise HTTPException(status_code=400, detail="Cannot remove the last active editor.")

    user_store.update_user(user_id, **updates)
    request.app.state.activity.record_activity(
        current_user.id, "user_update", f"user={user_id} " + ", ".join(f"{k}={v}" for k, v in sorted(updates.items()))
    )
    updated = user_store.get_by_id(user_id)
    return success_response("User updated.", UserOut.from_user(updated).model_dump())
