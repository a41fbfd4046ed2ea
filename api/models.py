"""
API request and response models for the gateway REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
audit/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format is camelCase (refreshToken, expiresIn, lockedUntil) to match the
existing frontend. Models use an alias generator and are dumped with
by_alias=True; Python attribute names stay snake_case.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from audit.models import AuditRecord
from auth.models import Session, User

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(CamelModel):
    """Request body for POST /api/auth/login.

    username and password are optional at the schema level so a missing field
    reaches the lifecycle controller and is reported as a 400 with the same
    envelope as every other validation failure.
    """

    username: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    remember_me: bool = False

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: Optional[str]) -> Optional[str]:
        # The password is never normalized.
        return v.strip() if v is not None else v


class RefreshRequest(CamelModel):
    """Request body for POST /api/auth/refresh."""

    refresh_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    username: str
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, username=user.username, email=user.email, role=user.role)


class UserProfile(UserSummary):
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class LoginResponse(CamelModel):
    """Response body for a successful login.

    refresh_token is None (and omitted via exclude_none) unless the caller
    asked for a persistent login.
    """

    success: bool = True
    token: str
    refresh_token: Optional[str] = None
    user: UserSummary
    expires_in: int
    attempts_remaining: int


class RefreshResponse(CamelModel):
    success: bool = True
    token: str
    expires_in: int


class MeResponse(CamelModel):
    success: bool = True
    user: UserProfile


class SessionInfo(CamelModel):
    """One row in GET /api/auth/sessions. Token values are never returned."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[datetime]
    last_activity: Optional[datetime]
    expires_at: datetime
    current: bool = False

    @classmethod
    def from_session(cls, session: Session, current_session_id: int) -> "SessionInfo":
        return cls(
            id=session.id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            created_at=session.created_at,
            last_activity=session.last_activity,
            expires_at=session.expires_at,
            current=session.id == current_session_id,
        )


class SessionListResponse(CamelModel):
    success: bool = True
    sessions: list[SessionInfo]


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class AuditLogEntry(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    user_id: Optional[int]
    username: Optional[str]
    email: Optional[str]
    action: str
    resource_type: Optional[str]
    resource_id: Optional[str]
    details: dict[str, Any]
    ip_address: Optional[str]
    user_agent: Optional[str]
    status: Optional[str]
    created_at: datetime

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditLogEntry":
        return cls(
            id=record.id,
            user_id=record.user_id,
            username=record.username,
            email=record.email,
            action=record.action,
            resource_type=record.resource_type,
            resource_id=record.resource_id,
            details=record.details,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            status=record.status,
            created_at=record.created_at,
        )


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    pages: int


class AuditLogResponse(CamelModel):
    success: bool = True
    logs: list[AuditLogEntry]
    pagination: Pagination


class AuditStatsResponse(CamelModel):
    success: bool = True
    period_days: int
    total: int
    top_actions: list[dict[str, Any]]
    top_users: list[dict[str, Any]]
    by_status: dict[str, int]
    daily_activity: list[dict[str, Any]]


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    extra="allow" lets domain errors attach fields such as lockedUntil or
    attemptsRemaining next to code and message.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
