"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Storefront Auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.
Token and service code never calls get_settings() itself: the app builds the
service from a Settings instance at startup and passes the values in.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  Signing secrets shorter than 32 chars are rejected. The access and refresh
  secrets must differ -- a leaked access secret must not be able to mint
  refresh tokens, and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storefront.config")

_REPO_ROOT = Path(__file__).resolve().parent.parent

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = f"sqlite:///{_REPO_ROOT / 'storefront_auth.db'}"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel; the model_validator
    # either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    access_token_expire_minutes: int = 15
    refresh_token_secret: str = ""
    refresh_token_expire_days: int = 10

    # ------------------------------------------------------------------
    # Passwords and sessions
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 10
    secure_cookies: bool = True
    refresh_token_compare_and_swap: bool = True
    revoke_sessions_on_password_change: bool = False

    # ------------------------------------------------------------------
    # Avatar uploads
    # ------------------------------------------------------------------

    media_dir: Path = _REPO_ROOT / "media"
    media_url: str = "/media"
    avatar_max_bytes: int = 2 * 1024 * 1024

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_token_expire_minutes")
    @classmethod
    def validate_access_ttl(cls, v: int) -> int:
        if v < 1 or v > 1440:
            raise ValueError("ACCESS_TOKEN_EXPIRE_MINUTES must be between 1 and 1440 (1 min to 1 day)")
        return v

    @field_validator("refresh_token_expire_days")
    @classmethod
    def validate_refresh_ttl(cls, v: int) -> int:
        if v < 1 or v > 365:
            raise ValueError("REFRESH_TOKEN_EXPIRE_DAYS must be between 1 and 365")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        # bcrypt.gensalt() accepts 4..31
        if v < 4 or v > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    @field_validator("media_url")
    @classmethod
    def validate_media_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith("/"):
            raise ValueError("MEDIA_URL must be an absolute path (e.g. /media)")
        return v

    @model_validator(mode="after")
    def validate_token_secrets(self) -> "Settings":
        """Enforce the signing secret policy.

        Dev mode (DEBUG=true): auto-generate each missing secret with a warning.
            Sessions will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters, and reject an
            access secret equal to the refresh secret.
        """
        for name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", name.upper())
            elif len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
