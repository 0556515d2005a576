"""
api/routes/v1/activity.py -- Read access to the activity log (editor only).

Routes:
  GET /api/v1/activity?page=&per_page=&user_id=   -- newest first, paginated
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from activity.store import ActivityStore
from api.limiter import enforce_api_rate_limit
from api.responses import success_response
from auth.dependencies import require_role
from auth.models import User

router = APIRouter()


@router.get("/activity", dependencies=[Depends(enforce_api_rate_limit)])
async def list_activity(
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    user_id: Optional[int] = Query(default=None, ge=1),
    current_user: User = Depends(require_role("editor")),
) -> JSONResponse:
    activity: ActivityStore = request.app.state.activity
    entries, info = activity.list_activity(page, per_page, user_id=user_id)
    return success_response(
        "Activity retrieved.",
        {"items": [e.to_dict() for e in entries], "pagination": info.to_dict()},
    )
