"""
audit/models.py -- Domain dataclasses for the audit log.

Pure data containers. audit/store.py does the work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass
class AuditRecord:
    """One security-relevant action or one handled HTTP request.

    user_id is None for anonymous requests and for failed logins against
    unknown usernames. username/email are joined from users at read time.
    """

    action: str  # "LOGIN_SUCCESS", "LOGOUT", "POST /api/auth/login", ...
    status: str  # "success" | "failure" | "error"
    id: Optional[int] = None
    user_id: Optional[int] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    username: Optional[str] = None
    email: Optional[str] = None


@dataclass
class AuditFilter:
    """Query parameters for AuditLog.query(). None means "no constraint"."""

    user_id: Optional[int] = None
    action: Optional[str] = None  # case-insensitive substring
    status: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = 50
    offset: int = 0
