"""Unit tests for auth/accounts.py -- user administration and password login.

Covers:
- username and password validation
- duplicate detection (case-insensitive, and usernames that still own sessions)
- TOTP enrollment: sealed seed, provisioning URI, code enforcement at login
- authenticate() outcomes never raise for bad credentials
- remove_user() cascades to the store and the cache
- authenticate_directory() only binds for cookie-safe, non-local usernames
"""

from __future__ import annotations

import string
from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from auth.accounts import authenticate, authenticate_directory, create_user, generate_password, remove_user
from auth.cipher import open_sealed
from auth.credentials import CredentialCodec
from auth.errors import DuplicateUserError, InvalidUsernameError, NotFoundError, WeakPasswordError
from auth.models import Session
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.tokens import encode_token


class TestCreateUser:
    def test_creates_user_with_hashed_password(self, store: AuthStore, codec: CredentialCodec) -> None:
        user, otp_secret, otp_uri = create_user(store, codec, "alice", "hunter22")
        assert otp_secret is None
        assert otp_uri is None
        stored = store.get_user("alice")
        assert stored is not None
        assert stored.password_hash != "hunter22"
        assert codec.verify(stored.password_hash, "hunter22")
        assert stored.otp_enabled is False
        assert user.username == "alice"

    @pytest.mark.parametrize("username", ["", "has space", "comma,name", "eq=name", "x" * 65, "tab\tname"])
    def test_invalid_usernames(self, store: AuthStore, codec: CredentialCodec, username: str) -> None:
        with pytest.raises(InvalidUsernameError):
            create_user(store, codec, username, "hunter22")

    @pytest.mark.parametrize("username", ["bob", "bob.smith", "bob_smith", "bob-smith", "bob@example.test", "B0B"])
    def test_valid_usernames(self, store: AuthStore, codec: CredentialCodec, username: str) -> None:
        create_user(store, codec, username, "hunter22")
        assert store.get_user(username) is not None

    def test_short_password(self, store: AuthStore, codec: CredentialCodec) -> None:
        with pytest.raises(WeakPasswordError):
            create_user(store, codec, "alice", "12345")
        assert store.get_user("alice") is None

    def test_six_characters_is_enough(self, store: AuthStore, codec: CredentialCodec) -> None:
        create_user(store, codec, "alice", "123456")

    def test_duplicate_is_case_insensitive(self, store: AuthStore, codec: CredentialCodec) -> None:
        create_user(store, codec, "Alice", "hunter22")
        with pytest.raises(DuplicateUserError):
            create_user(store, codec, "alice", "other-password")

    def test_username_with_leftover_sessions_is_refused(self, store: AuthStore, codec: CredentialCodec) -> None:
        store.put_session(
            Session(
                name="Authgate-Token",
                value_hash="orphan",
                expires=datetime.now(timezone.utc) + timedelta(days=1),
                domain="example.test",
                username="carol",
            )
        )
        with pytest.raises(DuplicateUserError):
            create_user(store, codec, "carol", "hunter22")


class TestTotpEnrollment:
    def test_otp_secret_is_sealed_with_password(self, store: AuthStore, codec: CredentialCodec) -> None:
        _user, otp_secret, otp_uri = create_user(store, codec, "alice", "hunter22", otp=True, issuer="example.test")
        stored = store.get_user("alice")

        assert stored.otp_enabled is True
        assert otp_secret.encode() not in stored.otp_secret
        assert open_sealed(stored.otp_secret, "hunter22").decode() == otp_secret
        assert otp_uri.startswith("otpauth://totp/")
        assert "issuer=example.test" in otp_uri

    def test_login_requires_current_code(self, store: AuthStore, codec: CredentialCodec) -> None:
        _user, otp_secret, _uri = create_user(store, codec, "alice", "hunter22", otp=True)
        current = pyotp.TOTP(otp_secret).now()
        wrong = "000000" if current != "000000" else "111111"

        assert authenticate(store, codec, "alice", "hunter22") is None
        assert authenticate(store, codec, "alice", "hunter22", wrong) is None
        assert authenticate(store, codec, "alice", "hunter22", current) is not None

    def test_code_without_password_is_useless(self, store: AuthStore, codec: CredentialCodec) -> None:
        _user, otp_secret, _uri = create_user(store, codec, "alice", "hunter22", otp=True)
        assert authenticate(store, codec, "alice", "wrong-pass", pyotp.TOTP(otp_secret).now()) is None


class TestAuthenticate:
    def test_correct_password(self, store: AuthStore, codec: CredentialCodec, alice) -> None:
        user = authenticate(store, codec, "alice", "hunter22")
        assert user is not None
        assert user.username == "alice"

    def test_wrong_password(self, store: AuthStore, codec: CredentialCodec, alice) -> None:
        assert authenticate(store, codec, "alice", "hunter23") is None

    def test_unknown_user(self, store: AuthStore, codec: CredentialCodec) -> None:
        assert authenticate(store, codec, "ghost", "hunter22") is None

    def test_username_match_is_exact(self, store: AuthStore, codec: CredentialCodec, alice) -> None:
        assert authenticate(store, codec, "ALICE", "hunter22") is None


class TestRemoveUser:
    def test_removes_user_sessions_and_cache(
        self, store: AuthStore, sessions: SessionManager, alice
    ) -> None:
        _s1, secret = sessions.issue("alice")
        sessions.issue("alice")

        assert remove_user(store, sessions, "alice") == 2
        assert store.get_user("alice") is None
        assert store.list_sessions("alice") == []
        assert len(sessions.cache) == 0
        with pytest.raises(NotFoundError):
            sessions.verify(encode_token("alice", secret))

    def test_unknown_user(self, store: AuthStore, sessions: SessionManager) -> None:
        with pytest.raises(NotFoundError):
            remove_user(store, sessions, "ghost")

    def test_name_can_be_reused_after_removal(
        self, store: AuthStore, codec: CredentialCodec, sessions: SessionManager, alice
    ) -> None:
        sessions.issue("alice")
        remove_user(store, sessions, "alice")
        create_user(store, codec, "alice", "new-password")
        assert authenticate(store, codec, "alice", "new-password") is not None


def test_generated_password_shape() -> None:
    password = generate_password()
    assert len(password) == 8
    assert any(c in string.digits for c in password)
    assert any(c in string.ascii_uppercase for c in password)


class StubDirectory:
    """Accepts exactly one (username, password) pair and records every bind."""

    def __init__(self, username: str, password: str) -> None:
        self.accepted = (username, password)
        self.binds: list[tuple[str, str]] = []

    def bind(self, username: str, password: str) -> bool:
        self.binds.append((username, password))
        return (username, password) == self.accepted


class TestAuthenticateDirectory:
    def test_directory_user_without_local_account(self, store: AuthStore) -> None:
        directory = StubDirectory("carol", "directory-pass")
        assert authenticate_directory(store, directory, "carol", "directory-pass") is True
        assert authenticate_directory(store, directory, "carol", "wrong") is False

    def test_local_account_is_never_checked_against_the_directory(self, store: AuthStore, alice) -> None:
        directory = StubDirectory("alice", "directory-pass")
        assert authenticate_directory(store, directory, "alice", "directory-pass") is False
        assert directory.binds == []

    def test_disabled_directory(self, store: AuthStore) -> None:
        assert authenticate_directory(store, None, "carol", "directory-pass") is False

    def test_cookie_unsafe_username_is_refused_before_binding(self, store: AuthStore) -> None:
        directory = StubDirectory("eve,$value=x", "directory-pass")
        assert authenticate_directory(store, directory, "eve,$value=x", "directory-pass") is False
        assert directory.binds == []
