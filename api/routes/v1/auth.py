"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/users/register         -- multipart form + avatar file; 201
  POST /api/v1/users/login            -- email/password; sets token cookies
  POST /api/v1/users/logout           -- clears session slot and cookies (requires auth)
  POST /api/v1/users/refresh-token    -- rotate refresh token; re-sets cookies
  POST /api/v1/users/change-password  -- requires auth
  GET  /api/v1/users/me               -- sanitized current user (requires auth)

Every handler calls one AuthService method and passes the result through
unwrap(). An Err becomes AuthServiceError, which the handler in api/main.py
renders as the failure envelope -- routes never build error responses.

Handlers are plain `def` so FastAPI runs them in its thread pool; bcrypt and
the SQLite store both block.

Security:
  Cookies are httpOnly, secure (SECURE_COOKIES), samesite=lax, and expire
  together with the token they carry.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse

from api.models import ChangePasswordRequest, LoginOut, LoginRequest, TokensOut, UserOut, envelope
from auth.dependencies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_auth_service,
    get_current_user_id,
    read_refresh_token,
)
from auth.models import Avatar, Registration, TokenPair
from auth.results import unwrap
from auth.service import AuthService

# Auth policy:
# - POST /users/register:        public
# - POST /users/login:           public
# - POST /users/refresh-token:   public -- the refresh token itself is the credential
# - POST /users/logout:          requires access token (get_current_user_id)
# - POST /users/change-password: requires access token
# - GET  /users/me:              requires access token
router = APIRouter()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _set_session_cookies(request: Request, response: JSONResponse, tokens: TokenPair) -> None:
    """Write both tokens as httpOnly cookies whose max_age matches the token TTL."""
    settings = request.app.state.settings
    response.set_cookie(
        ACCESS_COOKIE,
        value=tokens.access_token,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=tokens.refresh_token,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        max_age=settings.refresh_token_expire_days * 24 * 3600,
    )
    response.headers["Cache-Control"] = "no-store"


def _clear_session_cookies(request: Request, response: JSONResponse) -> None:
    secure = request.app.state.settings.secure_cookies
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, httponly=True, secure=secure, samesite="lax")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/users/register", status_code=201)
def register(
    request: Request,
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
    phone: Optional[str] = Form(default=None),
    role: Optional[str] = Form(default=None),
    first_name: Optional[str] = Form(default=None, alias="firstName"),
    last_name: Optional[str] = Form(default=None, alias="lastName"),
    address_line1: Optional[str] = Form(default=None, alias="addressLine1"),
    address_line2: Optional[str] = Form(default=None, alias="addressLine2"),
    avatar: Optional[UploadFile] = File(default=None),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account. The avatar image is mandatory.

    Validation (role, blank fields, password length, duplicates) happens in
    the service so every failure uses the same 400 envelope.
    """
    upload: Avatar | None = None
    if avatar is not None:
        max_bytes = request.app.state.settings.avatar_max_bytes
        # Read one byte past the limit so the uploader can reject oversize files.
        upload = Avatar(
            filename=avatar.filename or "",
            content=avatar.file.read(max_bytes + 1),
            content_type=avatar.content_type or "application/octet-stream",
        )

    registration = Registration(
        email=email,
        password=password,
        phone=phone,
        role=role,
        first_name=first_name,
        last_name=last_name,
        address_line1=address_line1,
        address_line2=address_line2,
    )
    user = unwrap(service.register(registration, upload))
    return JSONResponse(
        status_code=201,
        content=envelope(201, UserOut.from_public(user).model_dump(by_alias=True), "User created successfully"),
    )


@router.post("/users/login")
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; return and set both tokens.

    Any refresh token issued by an earlier login for this account stops
    working -- one session per account.
    """
    result = unwrap(service.login(body.email, body.password))
    payload = LoginOut(
        user=UserOut.from_public(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )
    resp = JSONResponse(
        status_code=200,
        content=envelope(200, payload.model_dump(by_alias=True), "User logged in successfully"),
    )
    _set_session_cookies(request, resp, result.tokens)
    return resp


@router.post("/users/refresh-token")
def refresh_token(
    request: Request,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange the current refresh token (cookie or x-refresh-token header) for a new pair."""
    tokens = unwrap(service.refresh(read_refresh_token(request)))
    resp = JSONResponse(
        status_code=200,
        content=envelope(
            200, TokensOut.from_pair(tokens).model_dump(by_alias=True), "Access token refreshed successfully"
        ),
    )
    _set_session_cookies(request, resp, tokens)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/users/logout")
def logout(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the account's refresh token and clear both cookies."""
    unwrap(service.logout(user_id))
    resp = JSONResponse(status_code=200, content=envelope(200, {}, "User logged out successfully"))
    _clear_session_cookies(request, resp)
    return resp


@router.post("/users/change-password")
def change_password(
    body: ChangePasswordRequest,
    user_id: int = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Replace the caller's password after verifying the old one."""
    unwrap(service.change_password(user_id, body.old_password, body.new_password))
    return JSONResponse(status_code=200, content=envelope(200, {}, "Password changed successfully"))


@router.get("/users/me")
def me(
    user_id: int = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Return the sanitized record of the authenticated user."""
    user = unwrap(service.get_current_user(user_id))
    return JSONResponse(
        status_code=200,
        content=envelope(200, UserOut.from_public(user).model_dump(by_alias=True), "User found"),
    )
