"""
auth/cache.py -- In-memory session cache.

Once a cookie has been verified against the store, the plaintext cookie value
and the resolved Session are kept here for the life of the process. Repeat
requests then skip the Argon2id comparison entirely, which is the expensive
part of verification.

The cache is derived state. Entries are only written right after a
successful store verification or a store write, and are removed explicitly
when the session is deleted. There is no TTL and no background sweep; expiry
is enforced by the session manager on every hit.

All access goes through one threading.Lock. FastAPI runs sync routes in a
thread pool, so concurrent verifications and issuances share this object.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import threading

from auth.models import Session


class SessionCache:
    """Thread-safe map of plaintext cookie value -> Session.

    A reverse index (value_hash -> plaintext) lets callers that only hold the
    persisted Session evict its entry without knowing the plaintext.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_plain: dict[str, Session] = {}
        self._plain_by_hash: dict[str, str] = {}

    def get(self, plain_value: str) -> Session | None:
        with self._lock:
            return self._by_plain.get(plain_value)

    def put(self, plain_value: str, session: Session) -> None:
        with self._lock:
            self._by_plain[plain_value] = session
            self._plain_by_hash[session.value_hash] = plain_value

    def delete(self, plain_value: str) -> None:
        with self._lock:
            session = self._by_plain.pop(plain_value, None)
            if session is not None:
                self._plain_by_hash.pop(session.value_hash, None)

    def discard(self, session: Session | None) -> None:
        """Evict the entry for a persisted session, if one is cached."""
        if session is None:
            return
        with self._lock:
            plain_value = self._plain_by_hash.pop(session.value_hash, None)
            if plain_value is not None:
                self._by_plain.pop(plain_value, None)

    def discard_username(self, username: str) -> int:
        """Evict every entry owned by username. Returns the number removed."""
        with self._lock:
            doomed = [plain for plain, s in self._by_plain.items() if s.username == username]
            for plain in doomed:
                session = self._by_plain.pop(plain)
                self._plain_by_hash.pop(session.value_hash, None)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._by_plain.clear()
            self._plain_by_hash.clear()

    def __contains__(self, plain_value: object) -> bool:
        with self._lock:
            return plain_value in self._by_plain

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_plain)
