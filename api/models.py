"""
API request and response models for AdminGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Every response is an envelope: {"success": true, "message"?, "data"?} or
{"success": false, "error", "details"?, "retryAfter"?}. Keys are camelCase
on the wire (alias_generator=to_camel), snake_case in Python.
"""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import IdentityProfile

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MSG_LOGIN = "Login successful"
MSG_LOGOUT = "Logout successful"
MSG_LOGOUT_ALL = "Logged out from all devices successfully"
MSG_TOKEN_REFRESHED = "Token refreshed successfully"
MSG_VALIDATION_FAILED = "Validation failed"
MSG_RATE_LIMITED = "Too many requests. Please try again later."
MSG_SERVER_ERROR = "An unexpected error occurred."

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """POST /api/auth/login body.

    max_length on password keeps inputs well under bcrypt's 72-byte
    truncation threshold for anything a human types; longer secrets simply
    fail verification.
    """

    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("Please provide a valid email address")
        return value


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    id: int
    email: str
    role: str
    is_active: bool
    last_login_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: IdentityProfile) -> "UserResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            role=profile.role,
            is_active=profile.is_active,
            last_login_at=profile.last_login_at,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class SessionData(_CamelModel):
    """data payload of login and refresh responses. The refresh token is never here."""

    user: UserResponse
    access_token: str


class ProfileData(_CamelModel):
    user: UserResponse


class ValidateData(_CamelModel):
    user: UserResponse
    valid: bool = True
    expires_at: Optional[datetime] = None
    expiring_soon: bool = False


class StatusData(_CamelModel):
    is_authenticated: bool
    user: Optional[UserResponse] = None


class SessionRecordResponse(_CamelModel):
    id: int
    created_at: datetime
    expires_at: datetime


class SessionListData(_CamelModel):
    sessions: list[SessionRecordResponse]
    count: int


class CleanupData(_CamelModel):
    removed: int


class SuccessResponse(_CamelModel):
    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None


class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(_CamelModel):
    success: bool = False
    error: str
    details: Optional[list[FieldError]] = None
    retry_after: Optional[int] = None


class HealthResponse(_CamelModel):
    success: bool = True
    message: str = "API is running"
    timestamp: datetime


def envelope(model: BaseModel) -> dict:
    """Serialize a response model the way it goes on the wire."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
