"""
API request and response models for Storefront Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format: JSON keys are camelCase (statusCode, accessToken, firstName)
for compatibility with existing storefront clients. Request models accept
either camelCase or snake_case keys.

Envelopes:
  success -> {statusCode, data, message, success: true}
  failure -> {statusCode, message, success: false, errors}
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import PublicUser, TokenPair

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Success envelope wrapping every 2xx payload."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    status_code: int
    data: Any = None
    message: str = "Success"
    success: bool = True


class ApiErrorResponse(BaseModel):
    """Failure envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    status_code: int
    message: str
    success: bool = False
    errors: list[str] = Field(default_factory=list)


def envelope(status_code: int, data: Any, message: str) -> dict:
    """Render a success envelope as a JSON-ready dict with camelCase keys."""
    return ApiResponse(status_code=status_code, data=data, message=message).model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login.

    Both fields are optional at the parser level: a missing value is reported
    by the service as a 400 "Missing required fields", not a schema error.
    """

    model_config = _CAMEL

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/users/change-password."""

    model_config = _CAMEL

    old_password: Optional[str] = Field(default=None, max_length=255)
    new_password: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response payloads (the `data` field of the success envelope)
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Sanitized user record -- never includes the password hash or refresh token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    phone: str
    username: str
    first_name: str
    last_name: str
    full_name: str
    address_line1: str
    address_line2: str
    avatar: str
    role: str
    is_email_verified: bool
    is_phone_verified: bool
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserOut":
        """Factory Method: map the domain view to the wire model."""
        return cls(
            id=user.id,
            email=user.email,
            phone=user.phone,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            full_name=user.full_name,
            address_line1=user.address_line1,
            address_line2=user.address_line2,
            avatar=user.avatar,
            role=user.role,
            is_email_verified=user.is_email_verified,
            is_phone_verified=user.is_phone_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokensOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    access_token: str
    refresh_token: str

    @classmethod
    def from_pair(cls, tokens: TokenPair) -> "TokensOut":
        return cls(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


class LoginOut(TokensOut):
    user: UserOut


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
