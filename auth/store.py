"""
auth/store.py -- SQLAlchemy Core persistence for users (the credential store).

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and controller code never touches SQL directly.

This module also owns the shared schema (MetaData, users and sessions tables)
and the engine factory, because the session store and the audit log join
against users and must live in the same database.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Raw passwords never reach this module -- only bcrypt hashes.

Failure policy:
  Any SQLAlchemyError (including a busy/statement timeout) is logged here and
  re-raised as core.errors.InternalError. Callers never see driver exceptions
  and a store outage is never silently treated as "user not found".

Timestamps:
  UTCDateTime stores naive UTC and returns aware UTC datetimes, so comparisons
  against datetime.now(timezone.utc) work the same on SQLite and PostgreSQL.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    create_engine,
    event,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import User
from core.errors import InternalError

logger = logging.getLogger("gateway.auth.store")


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips timezone-aware UTC values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(50), nullable=False, server_default="user"),
    Column("active", Boolean, nullable=False, server_default="1"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", UTCDateTime),
    Column("last_login", UTCDateTime),
    Column("created_at", UTCDateTime, nullable=False),
)

sessions_table = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("refresh_token", Text, unique=True),
    Column("expires_at", UTCDateTime, nullable=False, index=True),
    Column("refresh_expires_at", UTCDateTime),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", UTCDateTime, nullable=False),
    Column("last_activity", UTCDateTime, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and not inherited from the pool.
    foreign_keys=ON is what makes ON DELETE CASCADE remove a user's sessions.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def create_store_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Build the shared engine and make sure every table exists.

    timeout bounds every store call: SQLite waits at most that long on a
    locked database; PostgreSQL gets a connect timeout and a server-side
    statement_timeout; pooled engines also bound connection checkout.
    """
    connect_args: dict = {}
    engine_kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        engine_kwargs["pool_timeout"] = timeout
        engine_kwargs["pool_pre_ping"] = True
        if db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(1, int(timeout))
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


@contextmanager
def guarded_connection(
    engine: Engine, operation: str, passthrough: tuple[type[Exception], ...] = ()
) -> Iterator[Connection]:
    """Yield a connection; convert driver failures into InternalError.

    passthrough lists exception types the caller handles itself (e.g. the
    IntegrityError raised by a duplicate username).
    """
    try:
        with engine.connect() as conn:
            yield conn
    except passthrough:
        raise
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc.__class__.__name__)
        raise InternalError("Storage unavailable.") from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        engine = create_store_engine("sqlite:///gateway.db")
        store = UserStore(engine)
        store.create_user(User(username="admin", email="admin@example.com",
                               role="admin", hashed_password=hash_password("secret")))
        user = store.find_active_user_by_username("admin")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers treat that as a conflict, not an outage.
        """
        with guarded_connection(self.engine, "create_user", passthrough=(IntegrityError,)) as conn:
            result = conn.execute(
                users_table.insert().values(
                    username=user.username,
                    email=user.email,
                    password_hash=user.hashed_password,
                    role=user.role,
                    active=user.is_active,
                    failed_login_attempts=0,
                    created_at=utcnow(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key, active or not. Returns None if not found."""
        with guarded_connection(self.engine, "get_by_id") as conn:
            row = conn.execute(users_table.select().where(users_table.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_active_user_by_username(self, username: str) -> User | None:
        """Look up an active user by exact username (case-sensitive).

        Inactive accounts are invisible to login: they fail the same way as an
        unknown username.
        """
        with guarded_connection(self.engine, "find_active_user_by_username") as conn:
            row = conn.execute(
                users_table.select().where((users_table.c.username == username) & users_table.c.active.is_(True))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def record_failed_attempt(self, user_id: int, new_count: int, lock_until: datetime | None) -> None:
        """Persist the lockout policy's decision after a wrong password.

        Single UPDATE; concurrent failures are last-writer-wins.
        """
        with guarded_connection(self.engine, "record_failed_attempt") as conn:
            conn.execute(
                users_table.update()
                .where(users_table.c.id == user_id)
                .values(failed_login_attempts=new_count, locked_until=lock_until)
            )
            conn.commit()

    def record_successful_login(self, user_id: int) -> None:
        """Reset the failure counter, clear any lock and stamp last_login."""
        with guarded_connection(self.engine, "record_successful_login") as conn:
            conn.execute(
                users_table.update()
                .where(users_table.c.id == user_id)
                .values(failed_login_attempts=0, locked_until=None, last_login=utcnow())
            )
            conn.commit()

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, hashed_password.
        Returns True if a row was updated, False if user_id was not found.
        """
        column_map = {"role": "role", "is_active": "active", "hashed_password": "password_hash"}
        unknown = set(fields) - set(column_map)
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {column_map[k]: v for k, v in fields.items()}
        if not values:
            return False
        with guarded_connection(self.engine, "update_user") as conn:
            result = conn.execute(users_table.update().where(users_table.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.password_hash,
        role=row.role,
        is_active=bool(row.active),
        failed_login_attempts=row.failed_login_attempts or 0,
        locked_until=row.locked_until,
        last_login=row.last_login,
        created_at=row.created_at,
    )
