"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the lifecycle controller and routes do the work.

All timestamps are timezone-aware UTC datetimes. The store layer converts to
and from the naive UTC values persisted in the database.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLES = ("admin", "user")


@dataclass
class User:
    """An account that can log in with a username and password.

    failed_login_attempts and locked_until are owned by the lockout policy:
    the lifecycle controller writes them after every failed login and clears
    them on success.
    """

    username: str
    email: str
    role: str  # "admin" | "user"
    hashed_password: str
    id: int | None = None
    is_active: bool = True
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Session:
    """One authenticated client context bound to a token pair.

    username / email / role / user_active are read from the owning user row on
    every lookup, not copied at login time. A role change or deactivation
    therefore takes effect on the very next request.

    id is None before the record is written to the database.
    """

    user_id: int
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None
    refresh_expires_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    last_activity: datetime | None = None
    # Joined from users
    username: str | None = None
    email: str | None = None
    role: str | None = None
    user_active: bool = True


@dataclass(frozen=True)
class Identity:
    """The authenticated caller attached to a request by the Authenticator."""

    user_id: int
    username: str
    email: str
    role: str
    session_id: int
