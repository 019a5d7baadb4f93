"""
auth/cipher.py -- Sealing the TOTP seed with the user's password.

Security design decisions:
  The TOTP seed is stored AES-GCM encrypted under a key derived from the
  user's plaintext password, which the server never persists. Reading the
  database alone does not disclose the seed.

  Key derivation is a single MD5 digest of the passphrase, hex encoded: the
  32 ASCII hex characters are used directly as an AES-256 key. This is not a
  password KDF and is not meant to resist offline guessing -- the Argon2id
  password hash already sits next to the ciphertext. It only has to reproduce
  the same key for the same passphrase, and it keeps seeds sealed by older
  installs readable.

  Layout: nonce (12 bytes) || ciphertext || tag (16 bytes).

  open_sealed() raises CryptoError on any failure. A wrong passphrase and
  corrupted data are indistinguishable, so callers verify the password first
  and only then open the seed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from auth.errors import CryptoError

NONCE_SIZE = 12


def _derive_key(passphrase: str) -> bytes:
    return hashlib.md5(passphrase.encode("utf-8")).hexdigest().encode("ascii")  # noqa: S324 # nosec B324


def seal(plaintext: bytes, passphrase: str) -> bytes:
    """Encrypt plaintext under passphrase. Returns nonce-prefixed ciphertext."""
    try:
        nonce = os.urandom(NONCE_SIZE)
    except (OSError, NotImplementedError) as exc:
        raise CryptoError("could not read the system source of randomness") from exc
    aead = AESGCM(_derive_key(passphrase))
    return nonce + aead.encrypt(nonce, plaintext, None)


def open_sealed(data: bytes, passphrase: str) -> bytes:
    """Authenticate and decrypt data produced by seal().

    Raises CryptoError if data is too short, was tampered with, or was sealed
    under a different passphrase.
    """
    if len(data) < NONCE_SIZE:
        raise CryptoError("sealed data is shorter than the nonce")
    nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
    aead = AESGCM(_derive_key(passphrase))
    try:
        return aead.decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise CryptoError("sealed data failed authentication") from exc
