"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Everything here derives from two explicit objects: the request-scoped
Session put on request.state by ServerSessionMiddleware, and the UserStore
on app.state. Nothing is cached between requests.

get_session_manager() is the soft entry point (never raises).
get_current_user() raises HTTP 401 if nobody is logged in.
require_role(...) builds a dependency that raises HTTP 403 on a role mismatch.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the dependency injection system, but not from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.manager import SessionManager
from auth.models import User
from auth.sessions import Session


def get_session(request: Request) -> Session:
    return request.state.session


def get_session_manager(request: Request) -> SessionManager:
    """Bind the app's UserStore to this request's session."""
    return SessionManager(request.app.state.user_store, request.state.session)


def get_current_user(request: Request) -> User:
    """Require a logged-in, active account. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = get_session_manager(request).get_current_user()
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required.")
    return user


def require_role(*roles: str) -> Callable[[Request], User]:
    """Return a dependency that admits only the given roles.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the live role does not match.

        @router.get("/activity")
        async def route(user: User = Depends(require_role("editor"))): ...
    """

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="You do not have permission to do that.")
        return user

    return dependency
