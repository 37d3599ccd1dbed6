"""
auth/store.py -- SQLAlchemy Core persistence layer for users and refresh tokens.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_refresh_token are the
mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Only argon2 hashes of refresh tokens are stored. A database dump gives an
  attacker no usable session.

Uniqueness:
  UNIQUE(email) is the authoritative guard against duplicate accounts. Callers
  may pre-check with get_by_email(), but two concurrent registrations can both
  pass that check; the loser's INSERT hits the constraint and comes back as
  AuthFailure(ALREADY_EXISTS) rather than an exception.

Errors:
  Every other SQLAlchemyError is wrapped in PersistenceError so the layers
  above never import sqlalchemy.

Timestamps:
  Stored as ISO 8601 UTC strings with a fixed microsecond precision, so
  lexical order in SQL equals chronological order (expires_at < :now).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthFailure, CreationError, ErrorKind, PersistenceError
from auth.models import RefreshToken, RegisterMethod, Role, User

logger = logging.getLogger("gatehouse.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'gatehouse_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("last_name", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("register_method", String(20), nullable=False),
    Column("profile_pic", Text),
    Column("password", Text),  # bcrypt hash; NULL for OAuth-only users
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("hashed_token", Text, nullable=False),  # argon2id
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    # Never reuse a deleted session id: a stale reference must not hit a newer row.
    sqlite_autoincrement=True,
)

# Columns update_user() is allowed to touch. Anything else is a caller bug.
_UPDATABLE_USER_FIELDS = frozenset({"email", "name", "last_name", "role", "profile_pic", "password"})


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are not inherited by new connections from the pool, and
    foreign keys are off by default -- without this the CASCADE on
    refresh_tokens.user_id would be ignored.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and RefreshToken entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(email="a@x.com", name="A", last_name="B",
                                      register_method=RegisterMethod.email))
        store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Connection]:
        """Yield a connection inside a transaction; wrap storage faults.

        IntegrityError passes through untouched so callers that expect a
        unique-constraint rejection can turn it into a domain outcome.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("%s failed: %s", operation, exc)
            raise PersistenceError(f"{operation} failed") from exc

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User | AuthFailure:
        """Insert a new user and return it as stored.

        user.password must already be a hash. Returns
        AuthFailure(ALREADY_EXISTS) when the email is taken.
        """
        now = _now_iso()
        try:
            with self._transaction("create_user") as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=user.email,
                        name=user.name,
                        last_name=user.last_name,
                        role=Role(user.role).value,
                        register_method=RegisterMethod(user.register_method).value,
                        profile_pic=user.profile_pic,
                        password=user.password,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError:
            logger.info("create_user rejected by unique constraint (email=%s)", user.email)
            return AuthFailure(ErrorKind.ALREADY_EXISTS, f"User {user.email} already exists")

        created = self.get_by_id(user_id)
        if created is None:
            raise CreationError("No user returned from db after insert")
        return created

    def get_by_id(self, user_id: int) -> User | None:
        with self._transaction("get_by_id") as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self._transaction("get_by_email") as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> User | AuthFailure:
        """Update mutable fields on an existing user.

        Accepted fields: email, name, last_name, role, profile_pic, password
        (already hashed). Returns the updated user, AuthFailure(NOT_FOUND) if
        user_id does not exist, or AuthFailure(ALREADY_EXISTS) if a changed
        email collides with another account.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        fields["updated_at"] = _now_iso()
        try:
            with self._transaction("update_user") as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        except IntegrityError:
            return AuthFailure(ErrorKind.ALREADY_EXISTS, "Email already in use")
        if result.rowcount == 0:
            return AuthFailure(ErrorKind.NOT_FOUND, f"User {user_id} not found")
        updated = self.get_by_id(user_id)
        if updated is None:
            return AuthFailure(ErrorKind.NOT_FOUND, f"User {user_id} not found")
        return updated

    def delete_user(self, user_id: int) -> User | None:
        """Permanently delete a user and every refresh token it owns.

        Returns the deleted user, or None if it did not exist.
        """
        existing = self.get_by_id(user_id)
        if existing is None:
            return None
        with self._transaction("delete_user") as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.execute(_users.delete().where(_users.c.id == user_id))
        return existing

    # ------------------------------------------------------------------
    # Refresh token queries
    # ------------------------------------------------------------------

    def create_refresh_token(self, user_id: int, hashed_token: str, expires_at: datetime) -> RefreshToken:
        """Store a session row for user_id.

        Raises PersistenceError if user_id does not exist, e.g. the account
        was deleted while the login or rotation was in flight.
        """
        now = _now_iso()
        try:
            with self._transaction("create_refresh_token") as conn:
                result = conn.execute(
                    _refresh_tokens.insert().values(
                        user_id=user_id,
                        hashed_token=hashed_token,
                        expires_at=_to_iso(expires_at),
                        created_at=now,
                        updated_at=now,
                    )
                )
                token_id = result.inserted_primary_key[0]
                row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.id == token_id)).fetchone()
        except IntegrityError as exc:
            logger.error("create_refresh_token failed for user %s: %s", user_id, exc)
            raise PersistenceError("create_refresh_token failed") from exc
        if row is None:
            raise CreationError("No refresh token returned from db after insert")
        return _row_to_refresh_token(row)

    def get_refresh_tokens(self, user_id: int, include_expired: bool = False) -> list[RefreshToken]:
        """Return the user's refresh tokens, newest first.

        Expired rows are skipped unless include_expired is set; the sweep may
        not have run yet.
        """
        query = _refresh_tokens.select().where(_refresh_tokens.c.user_id == user_id)
        if not include_expired:
            query = query.where(_refresh_tokens.c.expires_at >= _now_iso())
        query = query.order_by(_refresh_tokens.c.id.desc())
        with self._transaction("get_refresh_tokens") as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def delete_refresh_token(self, token_id: int) -> bool:
        with self._transaction("delete_refresh_token") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.id == token_id))
        return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: int) -> int:
        with self._transaction("delete_refresh_tokens_for_user") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def delete_expired_refresh_tokens(self, now: datetime | None = None) -> int:
        """Delete rows whose expires_at is strictly before ``now``. Idempotent."""
        cutoff = _to_iso(now) if now is not None else _now_iso()
        with self._transaction("delete_expired_refresh_tokens") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < cutoff))
        return result.rowcount

    def delete_all_refresh_tokens(self) -> int:
        with self._transaction("delete_all_refresh_tokens") as conn:
            result = conn.execute(_refresh_tokens.delete())
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        last_name=row.last_name,
        role=Role(row.role),
        register_method=RegisterMethod(row.register_method),
        profile_pic=row.profile_pic,
        password=row.password,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        hashed_token=row.hashed_token,
        expires_at=datetime.fromisoformat(row.expires_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
