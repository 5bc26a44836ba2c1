"""
auth/tokens.py -- JWT issue/verify for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Every token carries the caller's claims plus
       iat, exp, and a random jti. The jti keeps two tokens issued for the same
       account within the same second distinct -- rotation relies on the new
       refresh token never equalling the old one.

  Two secrets: access tokens and refresh tokens are signed with independent
       secrets and TTLs. A refresh token presented as an access token (or the
       reverse) fails signature verification.

  No ambient config: issue()/verify() take the secret and TTL as arguments and
       TokenCodec is constructed from Settings by the app. Nothing in this
       module reads the environment.

  Failures: verify() raises TokenExpiredError when exp has passed and
       InvalidTokenError for everything else (bad signature, malformed token,
       wrong secret, missing claims). The service folds both into a single
       Unauthorized result so callers cannot tell which part was wrong.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, jwt
from jose.exceptions import JOSEError

from auth.models import User
from core.config import Settings

_ALGORITHM = "HS256"

# Registered claims added by issue() and stripped again by verify().
_REGISTERED_CLAIMS = ("iat", "exp", "jti")


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpiredError(TokenError):
    """The token's exp claim is in the past."""


class InvalidTokenError(TokenError):
    """Signature mismatch, malformed token, wrong secret, or missing claims."""


# ---------------------------------------------------------------------------
# Low-level encode / decode
# ---------------------------------------------------------------------------


def issue(claims: dict[str, Any], secret: str, ttl: timedelta, now: datetime | None = None) -> str:
    """Encode a signed JWT embedding claims plus iat, exp, and jti.

    Args:
        claims: Caller claims. Must not use the registered names iat/exp/jti.
        secret: HMAC signing secret.
        ttl:    Lifetime of the token; must be positive.
        now:    Issue time. Defaults to the current UTC time; tests pass a
                past value to produce already-expired tokens.
    """
    if ttl <= timedelta(0):
        raise ValueError("Token TTL must be positive.")
    issued_at = now or datetime.now(timezone.utc)
    payload = dict(claims)
    payload.update(
        iat=issued_at,
        exp=issued_at + ttl,
        jti=secrets.token_hex(16),
    )
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify(token: str, secret: str) -> dict[str, Any]:
    """Decode and verify a JWT; return the caller claims without iat/exp/jti.

    Raises TokenExpiredError if the token has expired and InvalidTokenError on
    any other failure.
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired.") from exc
    except JOSEError as exc:
        raise InvalidTokenError("Token is invalid.") from exc
    return {k: v for k, v in payload.items() if k not in _REGISTERED_CLAIMS}


# ---------------------------------------------------------------------------
# Access / refresh codec
# ---------------------------------------------------------------------------


def access_claims(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "role": user.role,
        "username": user.username,
        "email": user.email,
        "fullName": user.full_name,
    }


def refresh_claims(user: User) -> dict[str, Any]:
    return {"id": user.id, "role": user.role}


class TokenCodec:
    """Issues and verifies the two token kinds with their own secret and TTL.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token = codec.issue_refresh(user)
        claims = codec.verify_refresh(token)   # {"id": ..., "role": ...}
    """

    def __init__(
        self,
        access_secret: str,
        access_ttl: timedelta,
        refresh_secret: str,
        refresh_ttl: timedelta,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens must use different secrets.")
        self.access_secret = access_secret
        self.access_ttl = access_ttl
        self.refresh_secret = refresh_secret
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(
            access_secret=settings.access_token_secret,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_secret=settings.refresh_token_secret,
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
        )

    def issue_access(self, user: User) -> str:
        return issue(access_claims(user), self.access_secret, self.access_ttl)

    def issue_refresh(self, user: User) -> str:
        return issue(refresh_claims(user), self.refresh_secret, self.refresh_ttl)

    def verify_access(self, token: str) -> dict[str, Any]:
        return _require_id(verify(token, self.access_secret))

    def verify_refresh(self, token: str) -> dict[str, Any]:
        return _require_id(verify(token, self.refresh_secret))


def _require_id(claims: dict[str, Any]) -> dict[str, Any]:
    # A correctly signed token without an integer id was not minted by us.
    if not isinstance(claims.get("id"), int) or "role" not in claims:
        raise InvalidTokenError("Token is missing required claims.")
    return claims
