"""
auth/credentials.py -- Password and session-secret hashing.

Security design decisions:
  Primary algorithm: Argon2id via argon2-cffi's low-level API. The encoded
       form embeds the version and the cost parameters next to the salt and
       digest, so raising the defaults later never invalidates stored hashes:
       verification always recomputes with the parameters found in the hash.

           $argon2id$v=19$m=65536,t=3,p=8$<b64 salt>$<b64 digest>

       Salt and digest use unpadded standard base64.

  Legacy fallback: bcrypt. Installs that predate Argon2id stored bcrypt
       hashes. Anything that does not parse as Argon2id is handed to
       bcrypt.checkpw, so old accounts keep working without a forced reset.

  Format dispatch: an ordered tuple of strategies, each exposing
       can_parse() and verify(). The first strategy that can parse a hash
       decides. Adding another legacy format means appending a strategy.

  Comparison: hmac.compare_digest for the Argon2id digest. verify() never
       raises for malformed input; every failure path returns False.

  Secrets: generate_secret() draws from secrets.SystemRandom, enforces a
       minimum number of digits and uppercase letters, and shuffles the
       result so the forced characters do not sit at fixed positions.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hmac
import os
import re
import secrets
import string
from dataclasses import dataclass
from typing import Protocol

import bcrypt
from argon2.exceptions import HashingError
from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw

from auth.errors import CryptoError

ARGON2_ID = "argon2id"
_MAX_PARALLELISM = 255  # parallelism is a single byte in the Argon2 parameter block
_MAX_UINT32 = 2**32 - 1  # memory and iterations are uint32 in the Argon2 parameter block

_PARAMS_RE = re.compile(r"^m=(\d+),t=(\d+),p=(\d+)$")
_VERSION_RE = re.compile(r"^v=(\d+)$")


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


def _default_parallelism() -> int:
    return min((os.cpu_count() or 1) * 2, _MAX_PARALLELISM)


@dataclass(frozen=True)
class Argon2Params:
    """Cost parameters used when creating new hashes.

    memory is in KiB. The defaults are 64 MiB, 3 passes, two lanes per CPU,
    a 16-byte salt and a 32-byte digest.
    """

    memory: int = 64 * 1024
    iterations: int = 3
    parallelism: int = _default_parallelism()
    salt_length: int = 16
    key_length: int = 32


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    """Strict unpadded standard base64 decode. Raises ValueError."""
    if "=" in value:
        raise ValueError("padded base64 is not accepted")
    raw = base64.b64decode(value + "=" * (-len(value) % 4), validate=True)
    # Reject non-canonical encodings (stray bits in the final character).
    if _b64encode(raw) != value:
        raise ValueError("non-canonical base64")
    return raw


def encode_argon2id(params: Argon2Params, salt: bytes, digest: bytes) -> str:
    return (
        f"${ARGON2_ID}$v={ARGON2_VERSION}"
        f"$m={params.memory},t={params.iterations},p={params.parallelism}"
        f"${_b64encode(salt)}${_b64encode(digest)}"
    )


def parse_argon2id(encoded: str) -> tuple[Argon2Params, bytes, bytes]:
    """Split an encoded Argon2id hash into (params, salt, digest).

    Raises ValueError on wrong field count, unknown identifier, version
    mismatch, bad parameter syntax or bad base64. salt_length and key_length
    in the returned params reflect the decoded salt and digest.
    """
    fields = encoded.split("$")
    if len(fields) != 6 or fields[0] != "":
        raise ValueError("the encoded hash is not in the correct format")
    if fields[1] != ARGON2_ID:
        raise ValueError(f"unsupported algorithm {fields[1]!r}")

    version_match = _VERSION_RE.match(fields[2])
    if version_match is None:
        raise ValueError("bad version field")
    if int(version_match.group(1)) != ARGON2_VERSION:
        raise ValueError("incompatible version of argon2")

    params_match = _PARAMS_RE.match(fields[3])
    if params_match is None:
        raise ValueError("bad parameter field")
    memory, iterations, parallelism = (int(g) for g in params_match.groups())
    if not (1 <= memory <= _MAX_UINT32 and 1 <= iterations <= _MAX_UINT32):
        raise ValueError("memory or iterations out of range")
    if not 1 <= parallelism <= _MAX_PARALLELISM:
        raise ValueError("parallelism out of range")

    salt = _b64decode(fields[4])
    digest = _b64decode(fields[5])
    params = Argon2Params(
        memory=memory,
        iterations=iterations,
        parallelism=parallelism,
        salt_length=len(salt),
        key_length=len(digest),
    )
    return params, salt, digest


def _argon2id_raw(plaintext: str, salt: bytes, params: Argon2Params) -> bytes:
    return hash_secret_raw(
        secret=plaintext.encode("utf-8"),
        salt=salt,
        time_cost=params.iterations,
        memory_cost=params.memory,
        parallelism=params.parallelism,
        hash_len=params.key_length,
        type=Type.ID,
        version=ARGON2_VERSION,
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class HashStrategy(Protocol):
    name: str

    def can_parse(self, encoded: str) -> bool: ...

    def verify(self, encoded: str, plaintext: str) -> bool: ...


class Argon2idStrategy:
    name = ARGON2_ID

    def can_parse(self, encoded: str) -> bool:
        try:
            parse_argon2id(encoded)
        except ValueError:
            return False
        return True

    def verify(self, encoded: str, plaintext: str) -> bool:
        try:
            params, salt, digest = parse_argon2id(encoded)
            candidate = _argon2id_raw(plaintext, salt, params)
        except (ValueError, HashingError):
            return False
        return hmac.compare_digest(digest, candidate)


class BcryptStrategy:
    """Legacy fallback. Accepts anything; bcrypt itself rejects garbage."""

    name = "bcrypt"

    def can_parse(self, encoded: str) -> bool:
        return True

    def verify(self, encoded: str, plaintext: str) -> bool:
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), encoded.encode("utf-8"))
        except ValueError:
            return False


DEFAULT_STRATEGIES: tuple[HashStrategy, ...] = (Argon2idStrategy(), BcryptStrategy())


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class CredentialCodec:
    """Hashes new secrets with Argon2id and verifies against any known format.

    Usage:
        codec = CredentialCodec()
        encoded = codec.hash("hunter2")
        codec.verify(encoded, "hunter2")   # True
    """

    def __init__(
        self,
        params: Argon2Params | None = None,
        strategies: tuple[HashStrategy, ...] = DEFAULT_STRATEGIES,
    ) -> None:
        self.params = params or Argon2Params()
        self.strategies = strategies
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        """Return the encoded Argon2id hash of plaintext with a fresh random salt."""
        try:
            salt = secrets.token_bytes(self.params.salt_length)
        except (OSError, NotImplementedError) as exc:
            raise CryptoError("could not read the system source of randomness") from exc
        try:
            digest = _argon2id_raw(plaintext, salt, self.params)
        except HashingError as exc:
            raise CryptoError(f"argon2 hashing failed: {exc}") from exc
        return encode_argon2id(self.params, salt, digest)

    def verify(self, encoded: str, plaintext: str) -> bool:
        """Return True only if plaintext matches encoded under the first strategy that parses it."""
        for strategy in self.strategies:
            if strategy.can_parse(encoded):
                return strategy.verify(encoded, plaintext)
        return False

    @property
    def dummy_hash(self) -> str:
        """A throwaway hash with this codec's costs, for timing equalization.

        Computed on first use rather than at import so importing the module
        does not pay for a 64 MiB Argon2 run.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("authgate_timing_dummy")
        return self._dummy_hash


# ---------------------------------------------------------------------------
# Random secrets
# ---------------------------------------------------------------------------

_LOWER = string.ascii_lowercase
_UPPER = string.ascii_uppercase
_DIGITS = string.digits
_ALL = _LOWER + _UPPER + _DIGITS


def generate_secret(length: int, min_digits: int = 0, min_upper: int = 0) -> str:
    """Return a random alphanumeric string of the given length.

    At least min_digits digits and min_upper uppercase letters are present.
    Raises ValueError if the minimums exceed the length.
    """
    if min_digits < 0 or min_upper < 0 or min_digits + min_upper > length:
        raise ValueError("minimum character counts exceed the requested length")
    rng = secrets.SystemRandom()
    try:
        chars = [rng.choice(_DIGITS) for _ in range(min_digits)]
        chars += [rng.choice(_UPPER) for _ in range(min_upper)]
        chars += [rng.choice(_ALL) for _ in range(length - min_digits - min_upper)]
        rng.shuffle(chars)
    except (OSError, NotImplementedError) as exc:
        raise CryptoError("could not read the system source of randomness") from exc
    return "".join(chars)
