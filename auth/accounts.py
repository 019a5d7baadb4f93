"""
auth/accounts.py -- Local user administration and password authentication.

Security design decisions:
  Usernames: restricted to [A-Za-z0-9_.@-], 1-64 characters. The session
       cookie format ($username=<u>,$value=<v>) does no escaping, so a comma
       or '=' in a username would make the cookie undecodable. Rejecting them
       here keeps the wire format unambiguous.

  Duplicates: checked case-insensitively. "Alice" and "alice" cannot both
       exist, even though login itself matches the exact username. A
       username that already owns stored sessions is refused as well.

  Timing equalization: authenticate() always runs one credential
       verification, against the codec's dummy hash when the user is unknown,
       so response time does not reveal whether a username exists.

  Directory users: when no local account exists, authenticate_directory()
       binds against LDAP. Directory users have no TOTP and no stored
       password; the session is their only trace in the database.

  TOTP: pyotp generates and validates codes. The seed is sealed with the
       user's password (auth.cipher) and only opened after the password has
       been verified.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re

import pyotp

from auth.cipher import open_sealed, seal
from auth.credentials import CredentialCodec, generate_secret
from auth.errors import DuplicateUserError, InvalidUsernameError, NotFoundError, WeakPasswordError
from auth.ldap import LDAPDirectory
from auth.models import User
from auth.sessions import SessionManager
from auth.store import AuthStore

logger = logging.getLogger("authgate.auth")

USERNAME_RE = re.compile(r"[A-Za-z0-9_.@-]{1,64}")
MIN_PASSWORD_LENGTH = 6


def validate_username(username: str) -> None:
    if not USERNAME_RE.fullmatch(username):
        raise InvalidUsernameError("username must be 1-64 characters of letters, digits, '_', '.', '@' or '-'")


def validate_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise WeakPasswordError(f"password must be at least {MIN_PASSWORD_LENGTH} characters long")


def generate_password() -> str:
    """An 8-character password with at least one digit and one uppercase letter."""
    return generate_secret(8, 1, 1)


def create_user(
    store: AuthStore,
    codec: CredentialCodec,
    username: str,
    password: str,
    *,
    otp: bool = False,
    issuer: str = "localhost",
) -> tuple[User, str | None, str | None]:
    """Create a local user, optionally enrolling TOTP.

    Returns (user, otp_secret, otp_uri). The TOTP secret and provisioning URI
    are None unless otp is set; both are shown once to the administrator and
    never stored in plaintext.

    Raises InvalidUsernameError, WeakPasswordError or DuplicateUserError.
    """
    validate_username(username)
    validate_password(password)

    existing = store.find_user_case_insensitive(username)
    if existing is not None:
        raise DuplicateUserError(f"user '{existing.username}' already exists")
    if store.list_sessions(username):
        raise DuplicateUserError(
            f"username '{username}' already has sessions saved in the database; it may belong to an LDAP user"
        )

    otp_secret: str | None = None
    otp_uri: str | None = None
    sealed = b""
    if otp:
        otp_secret = pyotp.random_base32()
        otp_uri = pyotp.TOTP(otp_secret).provisioning_uri(name=username, issuer_name=issuer)
        sealed = seal(otp_secret.encode("ascii"), password)

    user = User(username=username, password_hash=codec.hash(password), otp_secret=sealed)
    store.create_user(user)
    logger.info("user '%s' created (totp=%s)", username, otp)
    return user, otp_secret, otp_uri


def remove_user(store: AuthStore, sessions: SessionManager, username: str) -> int:
    """Delete a user and every session it owns. Returns the number of sessions removed.

    Raises NotFoundError if the exact username does not exist.
    """
    removed = store.delete_user(username)
    if removed is None:
        raise NotFoundError(f"user '{username}' does not exist")
    # The store already cascaded; this evicts cached entries for the user.
    sessions.revoke_all(username)
    logger.info("user '%s' removed along with %d session(s)", username, removed)
    return removed


def authenticate(
    store: AuthStore,
    codec: CredentialCodec,
    username: str,
    password: str,
    totp_code: str | None = None,
) -> User | None:
    """Check a username/password (and TOTP code when enrolled).

    Returns the User on success, None on any failure. The reason is logged,
    never returned.
    """
    user = store.get_user(username)
    if user is None:
        # Equalize timing -- do NOT return before running a verification.
        codec.verify(codec.dummy_hash, password)
        logger.info("login failed for '%s': unknown user", username)
        return None
    if not codec.verify(user.password_hash, password):
        logger.info("login failed for '%s': invalid password", username)
        return None
    if user.otp_enabled:
        if not totp_code:
            logger.info("login failed for '%s': missing TOTP code", username)
            return None
        seed = open_sealed(user.otp_secret, password).decode("ascii")
        if not pyotp.TOTP(seed).verify(totp_code):
            logger.info("login failed for '%s': invalid TOTP code", username)
            return None
    return user


def authenticate_directory(store: AuthStore, directory: LDAPDirectory | None, username: str, password: str) -> bool:
    """Directory fallback for usernames with no local account.

    A local account always wins: its password is never checked against the
    directory. Usernames the cookie format cannot carry are refused before
    any bind.
    """
    if directory is None or not USERNAME_RE.fullmatch(username):
        return False
    if store.get_user(username) is not None:
        return False
    if not directory.bind(username, password):
        logger.info("login failed for '%s': rejected by LDAP", username)
        return False
    return True
