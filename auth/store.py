"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_session are the mappers. Route, CLI and session
manager code never touch SQL directly.

Two collections, each keyed by an opaque string:
  users    -- keyed by username (case-sensitive primary key)
  cookies  -- keyed by value_hash, the encoded hash of the session secret,
              with a secondary index on username so verification only reads
              one user's sessions.

Transactions:
  Every public method opens its own connection and releases it on every exit
  path. Reads run under engine.connect(); writes run under engine.begin(),
  which commits on success and rolls back on any exception. There is no
  transaction spanning two methods.

  SQLAlchemyError never escapes this module: it is re-raised as StoreError so
  callers can fail the single request without knowing about SQLAlchemy.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, LargeBinary, MetaData, String, Table, Text, create_engine, event, func
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateUserError, StoreError
from auth.models import Session, User

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("username", String(64), primary_key=True),
    Column("password_hash", Text, nullable=False),
    Column("otp_secret", LargeBinary, nullable=False),  # empty = TOTP disabled
    Column("created_at", String(32), nullable=False),
)

_cookies = Table(
    "cookies",
    _metadata,
    Column("value_hash", String(255), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("expires", String(40), nullable=False),  # ISO 8601, UTC
    Column("domain", String(255), nullable=False),
    Column("username", String(64), nullable=False, index=True),
    Column("http_only", Integer, nullable=False, server_default="1"),
    Column("secure", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User and Session records.

    Usage:
        store = AuthStore(get_settings().db_url)
        store.create_user(User(username="alice", password_hash=codec.hash("secret")))
        user = store.get_user("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        try:
            self.engine: Engine = create_engine(db_url, connect_args=connect_args)
            if db_url.startswith("sqlite"):
                event.listen(self.engine, "connect", _set_wal_mode)
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"could not open or create the database: {exc}") from exc

    @contextmanager
    def _reading(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("store read failed: %s", exc)
            raise StoreError(str(exc)) from exc

    @contextmanager
    def _writing(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("store write failed: %s", exc)
            raise StoreError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> None:
        """Insert a new user.

        Raises DuplicateUserError if the exact username already exists.
        Case-insensitive duplicates are the caller's check (see
        find_user_case_insensitive); the primary key only sees exact matches.
        """
        with self._writing() as conn:
            try:
                conn.execute(
                    _users.insert().values(
                        username=user.username,
                        password_hash=user.password_hash,
                        otp_secret=user.otp_secret or b"",
                        created_at=user.created_at or _now_iso(),
                    )
                )
            except IntegrityError as exc:
                raise DuplicateUserError(f"user '{user.username}' already exists") from exc

    def get_user(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self._reading() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_case_insensitive(self, username: str) -> User | None:
        """Look up a user ignoring case. Used for duplicate prevention, never for login."""
        with self._reading() as conn:
            row = conn.execute(
                _users.select().where(func.lower(_users.c.username) == username.lower()).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self._reading() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def delete_user(self, username: str) -> int | None:
        """Delete a user and every session it owns in one transaction.

        Returns the number of sessions removed alongside the user, or None if
        no user with that exact username exists.
        """
        with self._writing() as conn:
            result = conn.execute(_users.delete().where(_users.c.username == username))
            if result.rowcount == 0:
                return None
            cascade = conn.execute(_cookies.delete().where(_cookies.c.username == username))
        return cascade.rowcount

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def put_session(self, session: Session) -> None:
        """Insert or replace a session keyed by its value_hash."""
        values = {
            "name": session.name,
            "expires": session.expires.isoformat(),
            "domain": session.domain,
            "username": session.username,
            "http_only": 1 if session.http_only else 0,
            "secure": 1 if session.secure else 0,
        }
        with self._writing() as conn:
            updated = conn.execute(
                _cookies.update().where(_cookies.c.value_hash == session.value_hash).values(**values)
            )
            if updated.rowcount == 0:
                conn.execute(_cookies.insert().values(value_hash=session.value_hash, **values))

    def get_session(self, value_hash: str) -> Session | None:
        with self._reading() as conn:
            row = conn.execute(_cookies.select().where(_cookies.c.value_hash == value_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_sessions(self, username: str | None = None) -> list[Session]:
        """Snapshot of all sessions, or of one user's sessions when username is given."""
        query = _cookies.select()
        if username is not None:
            query = query.where(_cookies.c.username == username)
        with self._reading() as conn:
            rows = conn.execute(query.order_by(_cookies.c.expires)).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, value_hash: str) -> bool:
        """Delete one session. Returns True if a row was removed."""
        with self._writing() as conn:
            result = conn.execute(_cookies.delete().where(_cookies.c.value_hash == value_hash))
        return result.rowcount > 0

    def delete_sessions_by_username(self, username: str) -> int:
        """Delete every session owned by username. Returns the number removed.

        Idempotent: a second run after a partial failure finds fewer rows.
        """
        with self._writing() as conn:
            result = conn.execute(_cookies.delete().where(_cookies.c.username == username))
        return result.rowcount

    def delete_all_sessions(self) -> int:
        with self._writing() as conn:
            result = conn.execute(_cookies.delete())
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        username=row.username,
        password_hash=row.password_hash,
        otp_secret=bytes(row.otp_secret or b""),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    expires = datetime.fromisoformat(row.expires)
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return Session(
        name=row.name,
        value_hash=row.value_hash,
        expires=expires,
        domain=row.domain,
        username=row.username,
        http_only=bool(row.http_only),
        secure=bool(row.secure),
    )
