"""
auth/sessions.py -- Session lifecycle: issue, verify, revoke.

A session moves through absent -> active -> expired -> deleted. Nothing is
ever renewed in place: a new login creates a new session next to any that
are still active for the same user.

Verification pipeline (the hot path on every proxied request):

    decode_token(cookie)            -> (username, secret)
    SessionCache.get(secret)        -> fast path, no Argon2 work
    AuthStore.list_sessions(user)   -> slow path, Argon2 compare per session
    expiry check                    -> expired sessions are deleted here
    SessionCache.put(secret, s)     -> next request takes the fast path

A cache hit is confirmed with a keyed store read (get_session by value_hash)
so a session revoked by another process -- the admin CLI, for example -- is
not served from a stale cache entry. That read costs one indexed lookup, not
a hash computation.

Expired sessions are pruned lazily: verifying an expired cookie deletes the
session from the store and the cache before failing, so an expired session
never survives more than one verification attempt.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.cache import SessionCache
from auth.credentials import CredentialCodec, generate_secret
from auth.errors import ExpiredError, NotFoundError
from auth.models import Session
from auth.store import AuthStore
from auth.tokens import decode_token

logger = logging.getLogger("authgate.auth")

# Session secrets: 96 characters, at least 25 digits and 35 uppercase letters.
SECRET_LENGTH = 96
SECRET_MIN_DIGITS = 25
SECRET_MIN_UPPER = 35


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Owns every session state transition.

    The store, cache and codec are injected so the app lifespan controls
    their lifetime and tests can swap in cheap Argon2 parameters.
    """

    def __init__(
        self,
        store: AuthStore,
        cache: SessionCache,
        codec: CredentialCodec | None = None,
        *,
        cookie_name: str = "Authgate-Token",
        domain: str = "localhost",
        lifetime: timedelta = timedelta(days=7),
        secure: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.cache = cache
        self.codec = codec or CredentialCodec()
        self.cookie_name = cookie_name
        self.domain = domain
        self.lifetime = lifetime
        self.secure = secure
        self._clock = clock

    def issue(self, username: str, *, verified_external: bool = False) -> tuple[Session, str]:
        """Create, persist and cache a new session.

        Returns (session, plaintext_secret). The plaintext is only available
        from this call; the store keeps its hash.

        The username must be a local user, unless verified_external is set:
        the caller has already authenticated it against the directory.

        Raises NotFoundError if the user does not exist locally and
        verified_external is not set.
        """
        if not verified_external and self.store.get_user(username) is None:
            raise NotFoundError(f"user '{username}' does not exist")

        plain_value = generate_secret(SECRET_LENGTH, SECRET_MIN_DIGITS, SECRET_MIN_UPPER)
        session = Session(
            name=self.cookie_name,
            value_hash=self.codec.hash(plain_value),
            expires=self._clock() + self.lifetime,
            domain=self.domain,
            username=username,
            http_only=True,
            secure=self.secure,
        )
        self.store.put_session(session)
        self.cache.put(plain_value, session)
        return session, plain_value

    def verify(self, token: str) -> Session:
        """Resolve a cookie value to its active Session.

        Raises TokenSyntaxError for a malformed cookie, NotFoundError when no
        session matches, and ExpiredError when the match has expired (the
        session is deleted before raising).
        """
        username, plain_value = decode_token(token)

        session = self._from_cache(username, plain_value)
        if session is None:
            session = self._from_store(username, plain_value)
        if session is None:
            raise NotFoundError("no matching session")

        if session.expires < self._clock():
            self.store.delete_session(session.value_hash)
            self.cache.delete(plain_value)
            self.cache.discard(session)
            logger.info("pruned expired session for user '%s'", session.username)
            raise ExpiredError("session expired")

        self.cache.put(plain_value, session)
        return session

    def _from_cache(self, username: str, plain_value: str) -> Session | None:
        cached = self.cache.get(plain_value)
        if cached is None:
            return None
        if cached.username != username or self.store.get_session(cached.value_hash) is None:
            self.cache.delete(plain_value)
            return None
        return cached

    def _from_store(self, username: str, plain_value: str) -> Session | None:
        # Linear scan, bounded by the number of sessions this user holds.
        for candidate in self.store.list_sessions(username):
            if self.codec.verify(candidate.value_hash, plain_value):
                return candidate
        return None

    def revoke(self, session: Session | None) -> None:
        """Delete one session from the store and the cache. None is a no-op."""
        if session is None:
            return
        self.store.delete_session(session.value_hash)
        self.cache.discard(session)

    def revoke_all(self, username: str) -> int:
        """Delete every session owned by username. Returns the number of stored sessions removed."""
        removed = self.store.delete_sessions_by_username(username)
        self.cache.discard_username(username)
        return removed

    def purge_all(self) -> int:
        """Delete every session for every user and empty the cache."""
        removed = self.store.delete_all_sessions()
        self.cache.clear()
        return removed

    def list_sessions(self, username: str | None = None) -> list[Session]:
        return self.store.list_sessions(username)
