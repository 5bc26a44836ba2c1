"""Unit tests for auth/service.py -- the register/login/refresh/logout state machine.

Covers:
- register(): role, blank-field, password-length, duplicate, and avatar gates
- login(): unknown email, wrong password, and the stored refresh token
- refresh(): rotation, stale-token rejection, logout revocation
- change_password(): old/new password behavior, optional session revocation
- compare-and-swap rotation under a simulated concurrent refresh
- ErrorKind -> status code mapping and unwrap()
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from auth.passwords import PasswordHasher
from auth.results import AuthServiceError, Err, ErrorKind, Ok, fail, unwrap
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec, issue
from auth.uploads import LocalAvatarUploader

EMAIL = "jane.doe@example.com"
PASSWORD = "secret1"


def _kind(result) -> ErrorKind:
    assert isinstance(result, Err), f"expected Err, got {result!r}"
    return result.error.kind


def _login(service: AuthService, password: str = PASSWORD):
    result = service.login(EMAIL, password)
    assert isinstance(result, Ok), result
    return result.value


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_success_returns_sanitized_record(self, service, make_registration, avatar) -> None:
        result = service.register(make_registration(role="seller"), avatar)
        assert isinstance(result, Ok)
        user = result.value
        assert user.id is not None
        assert user.role == "seller"
        assert user.full_name == "Jane Doe"
        assert user.username == "jane.doe"
        assert user.avatar == "https://cdn.example.test/avatars/a.png"
        assert not hasattr(user, "hashed_password")
        assert not hasattr(user, "refresh_token")

    def test_password_is_hashed_before_persisting(self, service, store: UserStore, make_registration, avatar) -> None:
        user = unwrap(service.register(make_registration(), avatar))
        stored = store.get_by_id(user.id)
        assert stored.hashed_password != PASSWORD
        assert PasswordHasher().verify(PASSWORD, stored.hashed_password)
        assert stored.refresh_token is None

    def test_fields_are_trimmed(self, service, make_registration, avatar) -> None:
        user = unwrap(
            service.register(
                make_registration(email="  jane.doe@example.com ", first_name=" Jane ", role=" admin "),
                avatar,
            )
        )
        assert user.email == EMAIL
        assert user.full_name == "Jane Doe"
        assert user.role == "admin"

    @pytest.mark.parametrize("role", ["buyer", "", None, "ADMIN"])
    def test_invalid_role(self, service, make_registration, avatar, role) -> None:
        assert _kind(service.register(make_registration(role=role), avatar)) is ErrorKind.INVALID_INPUT

    @pytest.mark.parametrize("field", ["email", "password", "phone", "address_line1", "first_name", "last_name"])
    def test_missing_required_field(self, service, make_registration, avatar, field) -> None:
        result = service.register(make_registration(**{field: None}), avatar)
        assert _kind(result) is ErrorKind.INVALID_INPUT
        assert f"{field} is required" in result.error.errors

    def test_whitespace_only_field_counts_as_missing(self, service, make_registration, avatar) -> None:
        result = service.register(make_registration(phone="   "), avatar)
        assert _kind(result) is ErrorKind.INVALID_INPUT
        assert result.error.errors == ["phone is required"]

    def test_address_line2_is_optional(self, service, make_registration, avatar) -> None:
        assert unwrap(service.register(make_registration(address_line2=None), avatar)).address_line2 == ""

    def test_short_password(self, service, make_registration, avatar) -> None:
        assert _kind(service.register(make_registration(password="12345"), avatar)) is ErrorKind.INVALID_INPUT

    def test_six_character_password_accepted(self, service, make_registration, avatar) -> None:
        assert service.register(make_registration(password="123456"), avatar).ok

    def test_duplicate_email(self, service, registered, make_registration, avatar) -> None:
        result = service.register(make_registration(phone="+15550999"), avatar)
        assert _kind(result) is ErrorKind.CONFLICT
        assert result.error.status_code == 400

    def test_duplicate_phone(self, service, registered, make_registration, avatar) -> None:
        result = service.register(make_registration(email="other@example.com"), avatar)
        assert _kind(result) is ErrorKind.CONFLICT

    def test_duplicate_derived_username(self, service, registered, make_registration, avatar) -> None:
        """Same local part on another domain derives the same username."""
        result = service.register(make_registration(email="jane.doe@elsewhere.com", phone="+15550999"), avatar)
        assert _kind(result) is ErrorKind.CONFLICT

    def test_duplicate_rejected_before_upload(self, service, registered, uploader, make_registration, avatar) -> None:
        calls_before = len(uploader.calls)
        service.register(make_registration(phone="+15550999"), avatar)
        assert len(uploader.calls) == calls_before

    def test_username_conflict_stores_no_avatar(
        self, store: UserStore, codec: TokenCodec, make_registration, avatar, tmp_path
    ) -> None:
        service = AuthService(store, PasswordHasher(rounds=4), codec, LocalAvatarUploader(tmp_path))
        unwrap(service.register(make_registration(), avatar))
        stored = sorted((tmp_path / "avatars").iterdir())
        assert len(stored) == 1

        result = service.register(make_registration(email="jane.doe@elsewhere.com", phone="+15550999"), avatar)
        assert _kind(result) is ErrorKind.CONFLICT
        assert sorted((tmp_path / "avatars").iterdir()) == stored

    def test_insert_conflict_discards_uploaded_avatar(
        self, service, registered, uploader, store: UserStore, make_registration, avatar, monkeypatch
    ) -> None:
        """A registration that passes the duplicate check but loses the insert removes its file."""
        monkeypatch.setattr(store, "find_conflict", lambda *args: None)
        result = service.register(make_registration(phone="+15550999"), avatar)
        assert _kind(result) is ErrorKind.CONFLICT
        assert uploader.discarded == [uploader.url]

    def test_missing_avatar(self, service, make_registration) -> None:
        result = service.register(make_registration(), None)
        assert _kind(result) is ErrorKind.UPSTREAM_FAILURE
        assert result.error.status_code == 500

    def test_failed_upload(self, service, uploader, store: UserStore, make_registration, avatar) -> None:
        uploader.url = None
        assert _kind(service.register(make_registration(), avatar)) is ErrorKind.UPSTREAM_FAILURE
        assert store.get_by_email(EMAIL) is None


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_returns_tokens_and_stores_refresh(self, service, store: UserStore, registered) -> None:
        result = _login(service)
        assert result.tokens.access_token
        assert result.tokens.refresh_token
        assert result.user.id == registered.id
        assert store.get_by_id(registered.id).refresh_token == result.tokens.refresh_token

    def test_returned_user_is_sanitized(self, service, registered) -> None:
        user = _login(service).user
        assert not hasattr(user, "hashed_password")
        assert not hasattr(user, "refresh_token")

    def test_access_token_identifies_user(self, service, codec: TokenCodec, registered) -> None:
        claims = codec.verify_access(_login(service).tokens.access_token)
        assert claims["id"] == registered.id
        assert claims["email"] == EMAIL
        assert claims["fullName"] == "Jane Doe"

    def test_unknown_email(self, service, registered) -> None:
        assert _kind(service.login("nobody@example.com", PASSWORD)) is ErrorKind.NOT_FOUND

    def test_wrong_password(self, service, store: UserStore, registered) -> None:
        assert _kind(service.login(EMAIL, "wrong-password")) is ErrorKind.UNAUTHORIZED
        assert store.get_by_id(registered.id).refresh_token is None

    @pytest.mark.parametrize("email,password", [(None, PASSWORD), ("  ", PASSWORD), (EMAIL, None), (EMAIL, "")])
    def test_missing_credentials(self, service, registered, email, password) -> None:
        assert _kind(service.login(email, password)) is ErrorKind.INVALID_INPUT

    def test_second_login_invalidates_first_refresh_token(self, service, registered) -> None:
        first = _login(service).tokens.refresh_token
        _login(service)
        assert _kind(service.refresh(first)) is ErrorKind.UNAUTHORIZED


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_rotation_yields_new_token_and_retires_old(self, service, store: UserStore, registered) -> None:
        login_token = _login(service).tokens.refresh_token
        rotated = unwrap(service.refresh(login_token))
        assert rotated.refresh_token != login_token
        assert store.get_by_id(registered.id).refresh_token == rotated.refresh_token
        assert _kind(service.refresh(login_token)) is ErrorKind.UNAUTHORIZED

    def test_rotated_token_can_be_used_again(self, service, registered) -> None:
        first = unwrap(service.refresh(_login(service).tokens.refresh_token))
        assert service.refresh(first.refresh_token).ok

    @pytest.mark.parametrize("token", [None, ""])
    def test_absent_token(self, service, token) -> None:
        assert _kind(service.refresh(token)) is ErrorKind.UNAUTHORIZED

    def test_garbage_token(self, service, registered) -> None:
        assert _kind(service.refresh("not.a.jwt")) is ErrorKind.UNAUTHORIZED

    def test_access_token_is_rejected(self, service, registered) -> None:
        access = _login(service).tokens.access_token
        assert _kind(service.refresh(access)) is ErrorKind.UNAUTHORIZED

    def test_expired_token(self, service, codec: TokenCodec, store: UserStore, registered) -> None:
        past = datetime.now(timezone.utc) - timedelta(days=30)
        expired = issue({"id": registered.id, "role": "user"}, codec.refresh_secret, timedelta(days=1), now=past)
        store.set_refresh_token(registered.id, expired)
        assert _kind(service.refresh(expired)) is ErrorKind.UNAUTHORIZED

    def test_token_for_missing_user(self, service, codec: TokenCodec) -> None:
        token = issue({"id": 999, "role": "user"}, codec.refresh_secret, timedelta(days=1))
        assert _kind(service.refresh(token)) is ErrorKind.UNAUTHORIZED

    def test_failures_share_one_message(self, service, registered) -> None:
        stale = _login(service).tokens.refresh_token
        _login(service)
        messages = {service.refresh(t).error.message for t in (None, "garbage", stale)}
        assert len(messages) == 1

    def test_logout_then_refresh_fails(self, service, store: UserStore, registered) -> None:
        token = _login(service).tokens.refresh_token
        assert service.logout(registered.id) == Ok(None)
        assert store.get_by_id(registered.id).refresh_token is None
        assert _kind(service.refresh(token)) is ErrorKind.UNAUTHORIZED


class TestConcurrentRefresh:
    """Simulate two refreshes that both read the slot before either writes."""

    def _stale_reads(self, service: AuthService, store: UserStore, user_id: int, monkeypatch) -> str:
        token = _login(service).tokens.refresh_token
        snapshot = store.get_by_id(user_id)
        # The first refresh wins and rotates the slot in the DB...
        assert service.refresh(token).ok
        # ...while the second caller still holds a read taken before that write.
        monkeypatch.setattr(store, "get_by_id", lambda uid: dataclasses.replace(snapshot))
        return token

    def test_compare_and_swap_rejects_loser(self, service, store: UserStore, registered, monkeypatch) -> None:
        token = self._stale_reads(service, store, registered.id, monkeypatch)
        assert _kind(service.refresh(token)) is ErrorKind.UNAUTHORIZED

    def test_plain_overwrite_lets_last_writer_win(self, service, store: UserStore, registered, monkeypatch) -> None:
        service.compare_and_swap = False
        token = self._stale_reads(service, store, registered.id, monkeypatch)
        assert service.refresh(token).ok


# ---------------------------------------------------------------------------
# logout / current user
# ---------------------------------------------------------------------------


class TestLogoutAndCurrentUser:
    def test_logout_is_idempotent(self, service, registered) -> None:
        _login(service)
        assert service.logout(registered.id).ok
        assert service.logout(registered.id).ok

    def test_logout_unknown_user_is_harmless(self, service) -> None:
        assert service.logout(12345).ok

    def test_get_current_user(self, service, registered) -> None:
        user = unwrap(service.get_current_user(registered.id))
        assert user == registered

    def test_get_current_user_missing(self, service) -> None:
        assert _kind(service.get_current_user(404)) is ErrorKind.NOT_FOUND

    def test_authenticate_access_token(self, service, registered) -> None:
        access = _login(service).tokens.access_token
        assert service.authenticate_access_token(access) == Ok(registered.id)

    def test_authenticate_rejects_refresh_token(self, service, registered) -> None:
        refresh = _login(service).tokens.refresh_token
        assert _kind(service.authenticate_access_token(refresh)) is ErrorKind.UNAUTHORIZED
        assert _kind(service.authenticate_access_token(None)) is ErrorKind.UNAUTHORIZED


# ---------------------------------------------------------------------------
# change_password
# ---------------------------------------------------------------------------


class TestChangePassword:
    def test_old_password_stops_working(self, service, registered) -> None:
        _login(service)
        assert service.change_password(registered.id, PASSWORD, "new-secret").ok
        assert _kind(service.login(EMAIL, PASSWORD)) is ErrorKind.UNAUTHORIZED
        assert service.login(EMAIL, "new-secret").ok

    def test_wrong_old_password(self, service, registered) -> None:
        assert _kind(service.change_password(registered.id, "nope-nope", "new-secret")) is ErrorKind.UNAUTHORIZED
        assert service.login(EMAIL, PASSWORD).ok

    def test_unknown_user(self, service) -> None:
        assert _kind(service.change_password(404, PASSWORD, "new-secret")) is ErrorKind.NOT_FOUND

    def test_user_deleted_before_write(self, service, registered, store: UserStore, monkeypatch) -> None:
        monkeypatch.setattr(store, "update_password", lambda user_id, hashed: False)
        assert _kind(service.change_password(registered.id, PASSWORD, "new-secret")) is ErrorKind.NOT_FOUND

    def test_short_new_password(self, service, registered) -> None:
        assert _kind(service.change_password(registered.id, PASSWORD, "12345")) is ErrorKind.INVALID_INPUT

    def test_missing_passwords(self, service, registered) -> None:
        assert _kind(service.change_password(registered.id, None, "new-secret")) is ErrorKind.INVALID_INPUT
        assert _kind(service.change_password(registered.id, PASSWORD, "")) is ErrorKind.INVALID_INPUT

    def test_session_survives_by_default(self, service, registered) -> None:
        token = _login(service).tokens.refresh_token
        unwrap(service.change_password(registered.id, PASSWORD, "new-secret"))
        assert service.refresh(token).ok

    def test_session_revoked_when_configured(
        self, store: UserStore, codec: TokenCodec, uploader, make_registration, avatar
    ) -> None:
        service = AuthService(
            store,
            PasswordHasher(rounds=4),
            codec,
            uploader,
            revoke_sessions_on_password_change=True,
        )
        user = unwrap(service.register(make_registration(), avatar))
        token = _login(service).tokens.refresh_token
        unwrap(service.change_password(user.id, PASSWORD, "new-secret"))
        assert _kind(service.refresh(token)) is ErrorKind.UNAUTHORIZED


# ---------------------------------------------------------------------------
# results
# ---------------------------------------------------------------------------


class TestResults:
    @pytest.mark.parametrize(
        "kind,status",
        [
            (ErrorKind.INVALID_INPUT, 400),
            (ErrorKind.CONFLICT, 400),
            (ErrorKind.NOT_FOUND, 404),
            (ErrorKind.UNAUTHORIZED, 401),
            (ErrorKind.UPSTREAM_FAILURE, 500),
            (ErrorKind.INTERNAL, 500),
        ],
    )
    def test_status_codes(self, kind: ErrorKind, status: int) -> None:
        assert fail(kind, "x").error.status_code == status

    def test_unwrap(self) -> None:
        assert unwrap(Ok(3)) == 3
        with pytest.raises(AuthServiceError) as excinfo:
            unwrap(fail(ErrorKind.NOT_FOUND, "User not found"))
        assert excinfo.value.error.kind is ErrorKind.NOT_FOUND

    def test_hashing_failure_is_internal(
        self, store: UserStore, codec: TokenCodec, uploader, make_registration, avatar
    ) -> None:
        class _BrokenHasher(PasswordHasher):
            def hash(self, plain: str) -> str:
                raise MemoryError("out of memory")

        service = AuthService(store, _BrokenHasher(rounds=4), codec, uploader)
        assert _kind(service.register(make_registration(), avatar)) is ErrorKind.INTERNAL
