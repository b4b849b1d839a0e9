"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract only. Fields are
plain strings: a body with a missing field or wrong JSON type is a
422 from FastAPI, while a well-formed body carrying a malformed email,
short password, bad attempt id or bad code is turned into the domain types
by their parse() constructors in the route handler and fails with 400.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/signup."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    requires_2fa: bool = Field(alias="requires2FA")


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/login."""

    email: str
    password: str


class Verify2FARequest(BaseModel):
    """Request body for POST /api/v1/verify-2fa."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    login_attempt_id: str = Field(alias="loginAttemptId")
    two_fa_code: str = Field(alias="2FACode")


class VerifyTokenRequest(BaseModel):
    """Request body for POST /api/v1/verify-token."""

    token: str


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class TwoFactorRequiredResponse(BaseModel):
    """206 body for POST /login when the account requires a second factor.

    The code itself is never in the response -- it goes out by email.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str = "2FA required"
    login_attempt_id: str = Field(serialization_alias="loginAttemptId")


class VerifyTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
