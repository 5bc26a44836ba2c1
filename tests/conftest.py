"""
tests/conftest.py -- Shared test fixtures for Storefront Auth.

This module provides:
  - store / service: an in-memory UserStore and an AuthService wired to it
    with a fast bcrypt work factor and a fake avatar uploader
  - make_registration / avatar: valid registration input with overridable fields
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

Environment must be set before any api/core import: DEBUG lets get_settings()
auto-generate signing secrets, SECURE_COOKIES=false lets the http:// test
client send cookies back, and MEDIA_DIR keeps uploaded avatars out of the repo.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: set before importing api/ or core/ -- Settings is read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("MEDIA_DIR", tempfile.mkdtemp(prefix="storefront-media-"))

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Avatar, Registration
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from auth.uploads import LocalAvatarUploader
from core.config import get_settings

ACCESS_SECRET = "a" * 32 + "-access-secret-for-tests"
REFRESH_SECRET = "r" * 32 + "-refresh-secret-for-tests"

# Smallest valid PNG header -- the uploader only checks content type and size.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeUploader:
    """Avatar uploader double: returns a fixed URL, or None when built with url=None."""

    def __init__(self, url: str | None = "https://cdn.example.test/avatars/a.png") -> None:
        self.url = url
        self.calls: list[Avatar] = []
        self.discarded: list[str] = []

    def upload(self, avatar: Avatar) -> str | None:
        self.calls.append(avatar)
        return self.url

    def discard(self, url: str) -> None:
        self.discarded.append(url)


def make_registration(**overrides) -> Registration:
    fields = {
        "email": "jane.doe@example.com",
        "password": "secret1",
        "phone": "+15550100",
        "first_name": "Jane",
        "last_name": "Doe",
        "address_line1": "1 Market Street",
        "address_line2": "",
        "role": "user",
    }
    fields.update(overrides)
    return Registration(**fields)


def make_avatar() -> Avatar:
    return Avatar(filename="me.png", content=PNG_BYTES, content_type="image/png")


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(
        access_secret=ACCESS_SECRET,
        access_ttl=timedelta(minutes=15),
        refresh_secret=REFRESH_SECRET,
        refresh_ttl=timedelta(days=10),
    )


@pytest.fixture
def uploader() -> FakeUploader:
    return FakeUploader()


@pytest.fixture
def service(store: UserStore, codec: TokenCodec, uploader: FakeUploader) -> AuthService:
    return AuthService(store, PasswordHasher(rounds=4), codec, uploader)


@pytest.fixture
def registered(service: AuthService):
    """A registered user (password "secret1"); yields its PublicUser."""
    result = service.register(make_registration(), make_avatar())
    assert result.ok, result
    return result.value


@pytest.fixture(name="make_registration")
def make_registration_fixture():
    """Factory fixture: make_registration(**overrides) -> Registration."""
    return make_registration


@pytest.fixture
def avatar() -> Avatar:
    return make_avatar()


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore):
    """Return a lifespan that wires a test store into app.state instead of the real DB."""

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.user_store = user_store
        uploader = LocalAvatarUploader(settings.media_dir, settings.media_url, settings.avatar_max_bytes)
        app.state.auth_service = AuthService.from_settings(settings, user_store, uploader)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by an isolated shared-memory store.

    The DB name includes the test module name so modules never share state.
    """
    db_name = request.module.__name__.replace(".", "_")
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    user_store.close()


@pytest.fixture
def client(api_client: TestClient) -> TestClient:
    """The module client with an empty cookie jar, so tests never inherit a session."""
    api_client.cookies.clear()
    return api_client
