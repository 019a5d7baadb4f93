"""
API request and response models for the authgate HTTP endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

The login form posts camelCase field names (inputUsername, inputPassword,
inputTotp, recaptchaToken); aliases accept those while the Python side uses
snake_case.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /login."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=False)

    username: str = Field(alias="inputUsername", min_length=1, max_length=64)
    password: str = Field(alias="inputPassword", min_length=1, max_length=255)
    totp: Optional[str] = Field(default=None, alias="inputTotp", max_length=10)
    recaptcha_token: Optional[str] = Field(default=None, alias="recaptchaToken", max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful POST /login. expires is Unix time in milliseconds."""

    model_config = ConfigDict(frozen=True)

    expires: int


class LoginFormResponse(BaseModel):
    """What the login page needs to render its form."""

    model_config = ConfigDict(frozen=True)

    recaptcha_enabled: bool
    recaptcha_site_key: str = ""


class WhoamiResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
