"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; these classes own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

ROLES: tuple[str, ...] = ("user", "seller", "admin")


@dataclass
class User:
    """A storefront account as persisted by UserStore.

    hashed_password is the bcrypt output, never the plaintext password.
    refresh_token is the single session slot: at most one refresh token is
    valid per account at any time. It is None until the first login and is
    cleared again on logout.
    """

    email: str
    phone: str
    first_name: str
    last_name: str
    address_line1: str
    hashed_password: str
    role: str = "user"  # "user", "seller", "admin"
    username: str = ""
    full_name: str = ""
    address_line2: str = ""
    avatar: str = ""
    is_email_verified: bool = False
    is_phone_verified: bool = False
    refresh_token: str | None = None
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_public(self) -> PublicUser:
        """Return the sanitized view (no credential hash, no refresh token)."""
        fields = asdict(self)
        fields.pop("hashed_password")
        fields.pop("refresh_token")
        return PublicUser(**fields)


@dataclass(frozen=True)
class PublicUser:
    """Sanitized user record safe to hand to callers."""

    email: str
    phone: str
    first_name: str
    last_name: str
    address_line1: str
    role: str
    username: str
    full_name: str
    address_line2: str
    avatar: str
    is_email_verified: bool
    is_phone_verified: bool
    id: int | None
    created_at: str | None
    updated_at: str | None


@dataclass
class Registration:
    """Raw registration input as received from the transport layer.

    Every field is optional here because presence and blankness are validated
    by AuthService.register(), which reports InvalidInput rather than letting a
    parser reject the request.
    """

    email: str | None = None
    password: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class Avatar:
    """An avatar image handed over by the transport layer, not yet stored."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class LoginResult:
    user: PublicUser
    tokens: TokenPair
