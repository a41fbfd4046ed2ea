"""
api/routes/auth.py -- Login, logout, refresh and session endpoints.

Routes (mounted under /api/auth):
  POST /login        -- password login; returns access token (+ refresh token
                        for rememberMe)
  POST /logout       -- deletes the caller's current session (requires auth)
  POST /logout-all   -- deletes every session the caller owns (requires auth)
  POST /refresh      -- exchanges a refresh token for a new access token
  GET  /me           -- current user profile (requires auth)
  GET  /sessions     -- caller's active sessions (requires auth)

Handlers are thin: they pull the SessionLifecycle off app.state, pass plain
values in, and serialize the result. Failures are GatewayErrors raised by the
lifecycle or the Authenticator and rendered by the handler in api/main.py.

Security:
  [H2] Failed POST /login attempts are rate-limited per client IP (LOGIN_RATE_LIMIT).
       Successful logins do not count.
  [M5] Cache-Control: no-store on every response that carries a token.
  Handlers are plain `def` so the blocking store calls run in the threadpool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import login_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    SessionInfo,
    SessionListResponse,
    UserProfile,
    UserSummary,
)
from auth.dependencies import get_current_identity
from auth.lifecycle import SessionLifecycle
from auth.models import Identity
from core.errors import GatewayError

# Auth policy:
# - POST /login:       public (failed attempts rate-limited)
# - POST /refresh:     public -- the refresh token is the credential
# - POST /logout:      requires auth (get_current_identity)
# - POST /logout-all:  requires auth (get_current_identity)
# - GET  /me:          requires auth (get_current_identity)
# - GET  /sessions:    requires auth (get_current_identity)
router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password and open a new session.

    The same 401 body is returned for an unknown username and for a wrong
    password. refreshToken is only present when rememberMe was true.
    """
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    login_limit.check(request)  # [H2]
    try:
        result = lifecycle.login(
            body.username,
            body.password,
            remember_me=body.remember_me,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
        )
    except GatewayError:
        login_limit.record_failure(request)
        raise
    request.state.audit_user_id = result.user.id
    payload = LoginResponse(
        token=result.access_token,
        refresh_token=result.refresh_token,
        user=UserSummary.from_user(result.user),
        expires_in=result.expires_in,
        attempts_remaining=result.attempts_remaining,
    )
    return _no_store(payload.model_dump(mode="json", by_alias=True, exclude_none=True))


@router.post("/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Mint a new access token. Every failure yields the same 401."""
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    result = lifecycle.refresh(body.refresh_token)
    payload = RefreshResponse(token=result.access_token, expires_in=result.expires_in)
    return _no_store(payload.model_dump(mode="json", by_alias=True))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Delete the current session. The access token stops working immediately."""
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    lifecycle.logout(identity)
    return _no_store(MessageResponse(message="Logged out successfully.").model_dump(by_alias=True))


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Delete every session for the caller, including this one."""
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    lifecycle.logout_all(identity)
    return _no_store(MessageResponse(message="Logged out from all devices.").model_dump(by_alias=True))


@router.get("/me", response_model=MeResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Return the profile of the authenticated user."""
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    user = lifecycle.current_user(identity)
    payload = MeResponse(user=UserProfile.from_user(user))
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True))


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """List the caller's non-expired sessions, most recently active first."""
    lifecycle: SessionLifecycle = request.app.state.lifecycle
    sessions = lifecycle.list_sessions(identity)
    payload = SessionListResponse(sessions=[SessionInfo.from_session(s, identity.session_id) for s in sessions])
    return JSONResponse(content=payload.model_dump(mode="json", by_alias=True))
