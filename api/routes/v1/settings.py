"""
api/routes/v1/settings.py -- Site key/value settings (editor only).

Routes:
  GET /api/v1/settings/{key}   -- read one setting
  PUT /api/v1/settings/{key}   -- insert or overwrite (CSRF)

Keys are restricted to lowercase letters, digits, ".", "_" and "-".
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from fastapi.responses import JSONResponse

from api.limiter import enforce_api_rate_limit
from api.models import SettingUpdate
from api.responses import success_response
from auth.csrf import require_csrf
from auth.dependencies import require_role
from auth.models import User
from auth.store import UserStore

router = APIRouter()

_KEY_PATTERN = r"^[a-z0-9._-]{1,100}$"


@router.get("/settings/{key}", dependencies=[Depends(enforce_api_rate_limit)])
async def get_setting(
    request: Request,
    key: str = Path(pattern=_KEY_PATTERN),
    current_user: User = Depends(require_role("editor")),
) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    record = user_store.get_setting_record(key)
    if record is None:
        raise HTTPException(status_code=404, detail="Setting not found.")
    return success_response("Setting retrieved.", record)


@router.put("/settings/{key}", dependencies=[Depends(require_csrf), Depends(enforce_api_rate_limit)])
async def put_setting(
    request: Request,
    body: SettingUpdate,
    key: str = Path(pattern=_KEY_PATTERN),
    current_user: User = Depends(require_role("editor")),
) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    user_store.set_setting(key, body.value, body.description)
    request.app.state.activity.record_activity(current_user.id, "setting_update", key)
    return success_response("Setting saved.", user_store.get_setting_record(key))
