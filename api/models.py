"""
API request and response models for Nemesis REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.

Every response body, success or failure, is an ApiResponse envelope:
    {"success": bool, "message": str, "data": ...}   (data omitted when empty)
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from core.validation import MIN_PASSWORD_LENGTH, validate_email

RoleEnum = Literal["reader", "author", "editor"]


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None

    def to_content(self) -> dict:
        """Serializable body with "data" dropped when there is none."""
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailMixin(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        if not validate_email(value):
            raise ValueError("Email is invalid")
        return value.lower()


class RegisterRequest(_EmailMixin):
    """Request body for POST /api/v1/auth/register. Role is always "reader"."""

    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=255)


class LoginRequest(_EmailMixin):
    # No min_length: a too-short password must fail like any wrong password,
    # not with a validation error that says something about the account rules.
    password: str = Field(min_length=1, max_length=255)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    bio: Optional[str] = Field(default=None, max_length=5000)


class UserPatch(BaseModel):
    """Editor-only changes to another account."""

    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None


class SettingUpdate(BaseModel):
    value: str = Field(max_length=10_000)
    description: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response payloads
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of an account. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    is_active: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
            bio=user.bio,
            avatar=user.avatar,
        )
