"""
api/responses.py -- JSONResponse builders for the ApiResponse envelope.

Route handlers and exception handlers both go through these two functions so
clients can parse any response without inspecting the status code first.
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from api.models import ApiResponse


def success_response(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(success=True, message=message, data=data).to_content(),
    )


def error_response(
    message: str,
    status_code: int = 400,
    data: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(success=False, message=message, data=data).to_content(),
        headers=headers,
    )
