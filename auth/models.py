"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows
to these; the session manager and accounts module do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A local account that can log in with a password.

    password_hash is a self-describing encoded hash (Argon2id, or a legacy
    bcrypt hash for accounts migrated from older installs). It is never the
    plaintext password.

    otp_secret holds the AES-GCM sealed TOTP seed, keyed by the user's
    plaintext password. Empty bytes means TOTP is not enabled.
    """

    username: str
    password_hash: str
    otp_secret: bytes = b""
    created_at: str | None = None

    @property
    def otp_enabled(self) -> bool:
        return len(self.otp_secret) != 0


@dataclass(frozen=True)
class Session:
    """An issued authentication cookie, as persisted.

    value_hash is the encoded hash of the session secret. The plaintext secret
    only ever exists in the outgoing Set-Cookie header and as the session
    cache key. Sessions are immutable: logout and expiry delete, nothing
    updates in place.
    """

    name: str
    value_hash: str
    expires: datetime  # timezone-aware UTC
    domain: str
    username: str
    http_only: bool = True
    secure: bool = False
