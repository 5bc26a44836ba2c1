"""
auth/service.py -- Register/login/refresh/logout/change-password state machine.

Per-account session states:
    Unauthenticated --login--> Authenticated --logout / stale token--> Unauthenticated

The only session state is the user's refresh_token column. Login and refresh
overwrite it with a freshly minted token (rotation), which also invalidates
whatever token was there before (revocation). Logout clears it.

Every public method returns Ok(value) or Err(AuthError) from auth.results.
Expected failures never raise; the transport layer decides how to render them.

Concurrency:
  login() overwrites the slot unconditionally -- two concurrent logins for one
  account race and the last write wins, leaving the other caller with a
  refresh token that no longer matches.
  refresh() writes with a compare-and-swap keyed on the presented token when
  compare_and_swap=True, so of two concurrent refreshes with the same token
  exactly one succeeds. With compare_and_swap=False it overwrites like login().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import ROLES, Avatar, LoginResult, PublicUser, Registration, TokenPair, User
from auth.passwords import PasswordHasher
from auth.results import Err, ErrorKind, Ok, Result, fail
from auth.store import UserStore
from auth.tokens import TokenCodec, TokenError
from auth.uploads import AvatarUploader
from core.config import Settings

logger = logging.getLogger("storefront.auth")

MIN_PASSWORD_LENGTH = 6

_REQUIRED_FIELDS: tuple[str, ...] = (
    "email",
    "password",
    "phone",
    "address_line1",
    "first_name",
    "last_name",
)

# One message for every refresh/access-token rejection so the caller cannot
# tell a bad signature from an expired or rotated-away token.
_UNAUTHORIZED_REQUEST = "Unauthorized request"


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class AuthService:
    """Orchestrates credential checks, token minting, and the session slot.

    Usage:
        service = AuthService(store, PasswordHasher(10), codec, uploader)
        result = service.login("jane@example.com", "secret1")
        if result.ok:
            tokens = result.value.tokens
    """

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        uploader: AvatarUploader,
        *,
        compare_and_swap: bool = True,
        revoke_sessions_on_password_change: bool = False,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.uploader = uploader
        self.compare_and_swap = compare_and_swap
        self.revoke_sessions_on_password_change = revoke_sessions_on_password_change

    @classmethod
    def from_settings(cls, settings: Settings, store: UserStore, uploader: AvatarUploader) -> AuthService:
        return cls(
            store,
            PasswordHasher(settings.bcrypt_rounds),
            TokenCodec.from_settings(settings),
            uploader,
            compare_and_swap=settings.refresh_token_compare_and_swap,
            revoke_sessions_on_password_change=settings.revoke_sessions_on_password_change,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, registration: Registration, avatar: Avatar | None) -> Result[PublicUser]:
        """Validate input, upload the avatar, hash the password, and create the user.

        Checks run in this order: role, required fields, password length,
        duplicate email/phone/username, avatar upload. The duplicate check runs before
        the upload so a rejected registration never leaves an orphaned file.
        """
        role = (registration.role or "").strip()
        if role not in ROLES:
            return fail(ErrorKind.INVALID_INPUT, "Invalid role", [f"role must be one of: {', '.join(ROLES)}"])

        missing = [name for name in _REQUIRED_FIELDS if _blank(getattr(registration, name))]
        if missing:
            return fail(
                ErrorKind.INVALID_INPUT,
                "Missing required fields",
                [f"{name} is required" for name in missing],
            )

        if len(registration.password) < MIN_PASSWORD_LENGTH:
            return fail(
                ErrorKind.INVALID_INPUT,
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )

        email = registration.email.strip()
        phone = registration.phone.strip()
        username = email.split("@")[0]
        if self.store.find_conflict(email, phone, username) is not None:
            return fail(ErrorKind.CONFLICT, "User already exists")

        first_name = registration.first_name.strip()
        last_name = registration.last_name.strip()

        avatar_url = self.uploader.upload(avatar) if avatar is not None else None
        if not avatar_url:
            return fail(ErrorKind.UPSTREAM_FAILURE, "Error uploading avatar")

        try:
            hashed = self.hasher.hash(registration.password)
        except Exception:
            logger.exception("Password hashing failed during registration")
            return fail(ErrorKind.INTERNAL, "Error processing credentials")

        user = User(
            email=email,
            phone=phone,
            first_name=first_name,
            last_name=last_name,
            full_name=f"{first_name} {last_name}",
            username=username,
            address_line1=registration.address_line1.strip(),
            address_line2=(registration.address_line2 or "").strip(),
            avatar=avatar_url,
            hashed_password=hashed,
            role=role,
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError:
            # Lost a race with a concurrent registration.
            self.uploader.discard(avatar_url)
            return fail(ErrorKind.CONFLICT, "User already exists")
        except SQLAlchemyError:
            logger.exception("Failed to persist new user")
            self.uploader.discard(avatar_url)
            return fail(ErrorKind.UPSTREAM_FAILURE, "Error creating user")

        created = self.store.get_by_id(user_id)
        if created is None:
            return fail(ErrorKind.UPSTREAM_FAILURE, "Error creating user")
        logger.info("Registered user id=%s role=%s", user_id, role)
        return Ok(created.to_public())

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> Result[LoginResult]:
        """Check credentials and start a session, replacing any previous one."""
        if _blank(email) or not password:
            return fail(ErrorKind.INVALID_INPUT, "Missing required fields")

        user = self.store.get_by_email(email.strip())
        if user is None:
            logger.info("Login failed: unknown email")
            return fail(ErrorKind.NOT_FOUND, "User not found")
        if not self.hasher.verify(password, user.hashed_password):
            logger.info("Login failed: bad password for user id=%s", user.id)
            return fail(ErrorKind.UNAUTHORIZED, "Invalid credentials")

        minted = self._mint(user)
        if isinstance(minted, Err):
            return minted
        tokens = minted.value
        try:
            self.store.set_refresh_token(user.id, tokens.refresh_token)
        except SQLAlchemyError:
            logger.exception("Failed to persist refresh token for user id=%s", user.id)
            return fail(ErrorKind.UPSTREAM_FAILURE, "Error generating token")

        logger.info("User id=%s logged in", user.id)
        return Ok(LoginResult(user=user.to_public(), tokens=tokens))

    def refresh(self, presented: str | None) -> Result[TokenPair]:
        """Exchange the account's current refresh token for a new pair.

        The presented token must verify against the refresh secret AND equal
        the stored refresh_token exactly. A token from before the last
        rotation, or from before a logout, fails here.
        """
        if not presented:
            return fail(ErrorKind.UNAUTHORIZED, _UNAUTHORIZED_REQUEST)

        try:
            claims = self.codec.verify_refresh(presented)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc)
            return fail(ErrorKind.UNAUTHORIZED, _UNAUTHORIZED_REQUEST)

        user = self.store.get_by_id(claims["id"])
        if user is None:
            logger.info("Refresh rejected: user id=%s no longer exists", claims["id"])
            return fail(ErrorKind.UNAUTHORIZED, _UNAUTHORIZED_REQUEST)
        if user.refresh_token is None or not hmac.compare_digest(
            user.refresh_token.encode("utf-8"), presented.encode("utf-8")
        ):
            logger.warning("Refresh rejected: stale refresh token for user id=%s", user.id)
            return fail(ErrorKind.UNAUTHORIZED, _UNAUTHORIZED_REQUEST)

        minted = self._mint(user)
        if isinstance(minted, Err):
            return minted
        tokens = minted.value
        try:
            if self.compare_and_swap:
                stored = self.store.swap_refresh_token(user.id, presented, tokens.refresh_token)
            else:
                stored = self.store.set_refresh_token(user.id, tokens.refresh_token)
        except SQLAlchemyError:
            logger.exception("Failed to persist rotated refresh token for user id=%s", user.id)
            return fail(ErrorKind.UPSTREAM_FAILURE, "Error generating token")
        if not stored:
            logger.warning("Refresh rejected: concurrent rotation for user id=%s", user.id)
            return fail(ErrorKind.UNAUTHORIZED, _UNAUTHORIZED_REQUEST)

        logger.info("Rotated refresh token for user id=%s", user.id)
        return Ok(tokens)

    def logout(self, user_id: int) -> Result[None]:
        """Clear the session slot. Idempotent; the transport also clears cookies."""
        self.store.set_refresh_token(user_id, None)
        logger.info("User id=%s logged out", user_id)
        return Ok(None)

    def authenticate_access_token(self, token: str | None) -> Result[int]:
        """Resolve an access token to the id of an existing user."""
        if not token:
            return fail(ErrorKind.UNAUTHORIZED, _UNAUTHORIZED_REQUEST)
        try:
            claims = self.codec.verify_access(token)
        except TokenError:
            return fail(ErrorKind.UNAUTHORIZED, "Invalid access token")
        if self.store.get_by_id(claims["id"]) is None:
            return fail(ErrorKind.UNAUTHORIZED, "Invalid access token")
        return Ok(claims["id"])

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, old_password: str | None, new_password: str | None) -> Result[None]:
        """Replace the password after verifying the old one.

        The live refresh token survives unless revoke_sessions_on_password_change
        is set, in which case the account is logged out everywhere.
        """
        if not old_password or not new_password:
            return fail(ErrorKind.INVALID_INPUT, "Missing required fields")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return fail(
                ErrorKind.INVALID_INPUT,
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )

        user = self.store.get_by_id(user_id)
        if user is None:
            return fail(ErrorKind.NOT_FOUND, "User not found")
        if not self.hasher.verify(old_password, user.hashed_password):
            logger.info("Password change failed: bad password for user id=%s", user_id)
            return fail(ErrorKind.UNAUTHORIZED, "Invalid credentials")

        try:
            hashed = self.hasher.hash(new_password)
        except Exception:
            logger.exception("Password hashing failed for user id=%s", user_id)
            return fail(ErrorKind.INTERNAL, "Error processing credentials")

        if not self.store.update_password(user_id, hashed):
            return fail(ErrorKind.NOT_FOUND, "User not found")
        if self.revoke_sessions_on_password_change:
            self.store.set_refresh_token(user_id, None)
        logger.info("Password changed for user id=%s", user_id)
        return Ok(None)

    def get_current_user(self, user_id: int) -> Result[PublicUser]:
        user = self.store.get_by_id(user_id)
        if user is None:
            return fail(ErrorKind.NOT_FOUND, "User not found")
        return Ok(user.to_public())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mint(self, user: User) -> Result[TokenPair]:
        try:
            refresh_token = self.codec.issue_refresh(user)
            access_token = self.codec.issue_access(user)
        except Exception:
            logger.exception("Token signing failed for user id=%s", user.id)
            return fail(ErrorKind.INTERNAL, "Error generating token")
        return Ok(TokenPair(access_token=access_token, refresh_token=refresh_token))
