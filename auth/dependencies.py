"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens are checked in priority order:
  1. "accessToken" cookie -- set by POST /login and POST /refresh-token.
  2. Authorization: Bearer <token> header -- API clients.

Refresh tokens are read from the "refreshToken" cookie, falling back to the
x-refresh-token header.

get_current_user_id() raises AuthServiceError (rendered as a 401 failure
envelope by api/main.py) when the request carries no valid access token.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
It does not import from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.results import unwrap
from auth.service import AuthService

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"
REFRESH_HEADER = "x-refresh-token"


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state at startup."""
    return request.app.state.auth_service


def read_access_token(request: Request) -> str | None:
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def read_refresh_token(request: Request) -> str | None:
    return request.cookies.get(REFRESH_COOKIE) or request.headers.get(REFRESH_HEADER) or None


def get_current_user_id(request: Request) -> int:
    """Require a valid access token and return the caller's user id.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user_id: int = Depends(get_current_user_id)): ...
    """
    service = get_auth_service(request)
    return unwrap(service.authenticate_access_token(read_access_token(request)))
