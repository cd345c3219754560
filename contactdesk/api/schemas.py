from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from contactdesk.logging import get_correlation_id

MAX_USERNAME_LENGTH = 256
MAX_PASSWORD_LENGTH = 4096

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "request_timeout",
    "rate_limited",
    "validation_error",
    "server_error",
})


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class LoginRequest(BaseModel):
    """Admin login form body.

    Missing fields default to empty strings so the orchestrator, not the
    validator, decides how to reject them.
    """

    username: str = Field(default="", max_length=MAX_USERNAME_LENGTH)
    password: str = Field(default="", max_length=MAX_PASSWORD_LENGTH)

    model_config = ConfigDict(extra="ignore")


class LoginResponse(BaseModel):
    redirect_url: str = Field(alias="redirectUrl")
    expires_in: int = Field(alias="expiresIn")

    model_config = ConfigDict(populate_by_name=True)


class CsrfTokenResponse(BaseModel):
    token: str
    expires_in: int = Field(alias="expiresIn")

    model_config = ConfigDict(populate_by_name=True)


class AdminSessionResponse(BaseModel):
    admin_id: str = Field(alias="adminId")
    role: str
    session_id: str = Field(alias="sessionId")
    expires_at: int = Field(alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = Field(..., pattern="^(healthy|unhealthy)$")
    checks: dict[str, dict[str, Any]]
