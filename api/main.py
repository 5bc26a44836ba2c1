"""
api/main.py -- FastAPI application entry point for Storefront Auth.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware -- adds CORS headers for allowed browser origins
  2. log_requests   -- method, path, status, latency for every request

Lifespan builds the store, uploader, and AuthService from Settings at startup
and disposes the store on shutdown. Routes reach the service through
app.state.auth_service.

Error translation: AuthServiceError, HTTPException, RequestValidationError
and any unhandled exception all render the same failure envelope
{statusCode, message, success: false, errors}. This module is the only place
an error becomes an HTTP response.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ApiErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.results import AuthServiceError
from auth.service import AuthService
from auth.store import UserStore
from auth.uploads import LocalAvatarUploader
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storefront.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire configuration, store, and service into app.state.

    The service receives its secrets and TTLs here, once, from Settings --
    nothing below this point reads the environment.
    """
    logger.info("Storefront Auth starting up")
    app.state.settings = _settings
    app.state.user_store = UserStore(_settings.database_url)
    uploader = LocalAvatarUploader(_settings.media_dir, _settings.media_url, _settings.avatar_max_bytes)
    app.state.auth_service = AuthService.from_settings(_settings, app.state.user_store, uploader)
    logger.info(
        "Auth initialized (refresh_cas=%s, revoke_on_password_change=%s)",
        _settings.refresh_token_compare_and_swap,
        _settings.revoke_sessions_on_password_change,
    )

    yield

    app.state.user_store.close()
    logger.info("Storefront Auth shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Storefront Auth API",
    description="Account registration, login, and refresh-token rotation for the storefront.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Refresh-Token"],
    max_age=3600,
)

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration and static avatars
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Users"])

_settings.media_dir.mkdir(parents=True, exist_ok=True)
app.mount(_settings.media_url, StaticFiles(directory=str(_settings.media_dir)), name="media")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ApiErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, message: str, errors: list[str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiErrorResponse(status_code=status_code, message=message, errors=errors or []).model_dump(
            by_alias=True
        ),
    )


@app.exception_handler(AuthServiceError)
async def auth_service_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Render a service Err. The one translator from AuthError to HTTP."""
    return _error_response(exc.error.status_code, exc.error.message, exc.error.errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are invalid input: 400 with one line per failing field."""
    errors = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', 'invalid')}" for e in exc.errors()]
    return _error_response(400, "Request validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing-level errors (404 unknown path, 405 wrong method) in the envelope."""
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(version=__version__, database=database)
