"""
api/routes/v1/uploads.py -- Media upload endpoint.

Routes:
  POST /api/v1/uploads   -- multipart upload, field "file" (author/editor, CSRF, quota)

Validation and storage live in uploads/validator.py; this module only maps
the multipart part onto IncomingFile and the outcome onto a status code.
Multipart clients may send the CSRF token as a "csrf_token" form field
instead of the X-CSRF-Token header.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse

from api.limiter import enforce_api_rate_limit
from api.responses import error_response, success_response
from auth.csrf import require_csrf
from auth.dependencies import require_role
from auth.models import User
from core.config import get_settings
from uploads.validator import IncomingFile, UploadFailure, validate_and_store

router = APIRouter()

_FAILURE_STATUS: dict[UploadFailure, int] = {
    UploadFailure.UPLOAD_ERROR: 400,
    UploadFailure.TYPE_REJECTED: 415,
    UploadFailure.SIZE_EXCEEDED: 413,
    UploadFailure.STORAGE_FAILURE: 500,
}


@router.post("/uploads", status_code=201, dependencies=[Depends(require_csrf), Depends(enforce_api_rate_limit)])
def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(default=None),
    current_user: User = Depends(require_role("author", "editor")),
) -> JSONResponse:
    """Validate the uploaded file against the configured type list and size cap, then store it."""
    settings = get_settings()
    incoming = IncomingFile.from_upload(file)
    result = validate_and_store(
        incoming,
        allowed_types=settings.allowed_upload_types,
        max_size=settings.max_upload_bytes,
        directory=request.app.state.upload_dir,
    )
    if not result.ok:
        return error_response(
            result.message,
            status_code=_FAILURE_STATUS[result.failure],
            data={"reason": result.failure.value},
        )

    request.app.state.activity.record_activity(current_user.id, "upload", result.asset.stored_name)
    return success_response(result.message, result.asset.to_dict(), status_code=201)
