"""
core/errors.py -- Error taxonomy shared by the auth core and the HTTP layer.

Each class carries its HTTP status and a stable machine-readable code. The
auth core raises these; api/main.py converts them into the JSON error envelope
in a single exception handler, so route handlers never build error responses
by hand.

extra holds additional envelope fields (lockedUntil, attemptsRemaining) that
clients need to render the failure.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class GatewayError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.extra = extra or {}


class ValidationError(GatewayError):
    """Missing or malformed input (400)."""

    status_code = 400
    error_code = "validation_error"


class AuthenticationError(GatewayError):
    """Bad credentials or token (401). Never says which factor failed."""

    status_code = 401
    error_code = "unauthorized"


class AuthorizationError(GatewayError):
    """Disabled account or insufficient role (403)."""

    status_code = 403
    error_code = "forbidden"


class AccountLockedError(GatewayError):
    """Too many failed logins; rejected until locked_until (423)."""

    status_code = 423
    error_code = "account_locked"

    def __init__(self, locked_until: datetime) -> None:
        super().__init__(
            "Account is locked due to too many failed attempts.",
            extra={"lockedUntil": locked_until.isoformat()},
        )
        self.locked_until = locked_until


class InternalError(GatewayError):
    """Store or signing failure (500). The message is safe to show clients."""

    status_code = 500
    error_code = "internal_error"
