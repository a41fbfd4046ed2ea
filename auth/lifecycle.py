"""
auth/lifecycle.py -- Session lifecycle controller: login, logout, refresh.

SessionLifecycle composes the lockout policy, credential store, token issuer
and session store. It is framework-free: the HTTP layer passes plain values
in and renders the returned dataclasses or raised GatewayErrors.

Login order matters:
  1. Missing username/password            -> ValidationError (400)
  2. Unknown or inactive username         -> bcrypt against DUMMY_HASH, then
                                             the same 401 as a wrong password
  3. Lock in force                        -> AccountLockedError (423), no
                                             password comparison at all
  4. Wrong password                       -> counter +1 (maybe lock), 401 with
                                             attemptsRemaining
  5. Success                              -> counter reset, tokens, session

The refresh token is always stored on the session row. It is only RETURNED
to callers who asked for a persistent (remember-me) login.

Audit writes go to an injected sink and are fire-and-forget; the sink
never raises into this module.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from auth.lockout import LockoutPolicy
from auth.models import Identity, Session, User
from auth.sessions import SessionStore
from auth.store import UserStore, utcnow
from auth.tokens import DUMMY_HASH, TokenError, TokenIssuer, verify_password
from core.errors import AccountLockedError, AuthenticationError, ValidationError

logger = logging.getLogger("gateway.auth")


class AuditSink(Protocol):
    def log_action(
        self,
        user_id: Optional[int],
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
        status: str = "success",
    ) -> None: ...


@dataclass(frozen=True)
class TokenPolicy:
    """Token lifetimes in seconds."""

    access_ttl: int = 3600
    remember_me_ttl: int = 7 * 24 * 3600
    refresh_ttl: int = 7 * 24 * 3600


@dataclass(frozen=True)
class LoginResult:
    user: User
    access_token: str
    refresh_token: str | None  # None unless remember_me was requested
    expires_in: int
    session_id: int
    attempts_remaining: int


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    expires_in: int
    session_id: int


_REFRESH_FAILED = "Refresh token expired or invalid."


class SessionLifecycle:
    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        lockout: LockoutPolicy,
        audit: AuditSink,
        token_policy: TokenPolicy = TokenPolicy(),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._issuer = issuer
        self._lockout = lockout
        self._audit = audit
        self._tokens = token_policy
        self._clock = clock

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        username: str | None,
        password: str | None,
        remember_me: bool = False,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        if not username or not password:
            raise ValidationError("Username and password required.")

        user = self._users.find_active_user_by_username(username)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password, DUMMY_HASH)
            self._audit.log_action(
                None, "LOGIN_FAILED", "user", username, {"reason": "unknown_user", "ip": ip_address}, "failure"
            )
            raise AuthenticationError(
                "Invalid credentials.",
                error_code="invalid_credentials",
                extra={"attemptsRemaining": self._lockout.max_attempts - 1},
            )

        now = self._clock()
        if self._lockout.is_locked(user.locked_until, now):
            self._audit.log_action(
                user.id, "LOGIN_BLOCKED", "user", user.username, {"reason": "locked", "ip": ip_address}, "failure"
            )
            raise AccountLockedError(user.locked_until)

        if not verify_password(password, user.hashed_password):
            decision = self._lockout.register_failure(user.failed_login_attempts, now)
            self._users.record_failed_attempt(user.id, decision.failed_attempts, decision.locked_until)
            if decision.locked_until is not None:
                logger.warning("Account locked after %d failed attempts: user_id=%d", decision.failed_attempts, user.id)
            self._audit.log_action(
                user.id,
                "LOGIN_FAILED",
                "user",
                user.username,
                {"reason": "bad_password", "attempts": decision.failed_attempts, "ip": ip_address},
                "failure",
            )
            raise AuthenticationError(
                "Invalid credentials.",
                error_code="invalid_credentials",
                extra={"attemptsRemaining": decision.attempts_remaining},
            )

        self._users.record_successful_login(user.id)

        access_ttl = self._tokens.remember_me_ttl if remember_me else self._tokens.access_ttl
        access_token = self._issuer.issue_access_token(user.id, user.username, user.role, access_ttl)
        refresh_token = self._issuer.issue_refresh_token(user.id, self._tokens.refresh_ttl)
        session_id = self._sessions.create(
            Session(
                user_id=user.id,
                access_token=access_token,
                expires_at=now + timedelta(seconds=access_ttl),
                refresh_token=refresh_token,
                refresh_expires_at=now + timedelta(seconds=self._tokens.refresh_ttl),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        self._audit.log_action(
            user.id, "LOGIN_SUCCESS", "user", user.username, {"remember_me": remember_me, "ip": ip_address}
        )
        return LoginResult(
            user=user,
            access_token=access_token,
            refresh_token=refresh_token if remember_me else None,
            expires_in=access_ttl,
            session_id=session_id,
            attempts_remaining=self._lockout.max_attempts,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, identity: Identity) -> None:
        """Delete the caller's current session. Already gone is not an error."""
        self._sessions.delete_by_id(identity.session_id)
        self._audit.log_action(identity.user_id, "LOGOUT", "user", identity.username)

    def logout_all(self, identity: Identity) -> int:
        """Delete every session the caller owns, the current one included."""
        count = self._sessions.delete_all_for_user(identity.user_id)
        self._audit.log_action(identity.user_id, "LOGOUT_ALL", "user", identity.username, {"sessions": count})
        return count

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None) -> RefreshResult:
        """Mint a new access token for the session holding refresh_token.

        Every failure -- bad signature, expired, wrong token type, unknown or
        expired session, deactivated owner -- raises the same 401.
        """
        if not refresh_token:
            raise ValidationError("Refresh token required.")

        try:
            self._issuer.verify_refresh(refresh_token)
        except TokenError as exc:
            raise AuthenticationError(_REFRESH_FAILED, error_code="invalid_refresh_token") from exc

        session = self._sessions.find_by_refresh_token(refresh_token)
        if session is None or not session.user_active:
            raise AuthenticationError(_REFRESH_FAILED, error_code="invalid_refresh_token")

        access_ttl = self._tokens.access_ttl
        new_token = self._issuer.issue_access_token(session.user_id, session.username, session.role, access_ttl)
        self._sessions.replace_access_token(session.id, new_token, self._clock() + timedelta(seconds=access_ttl))
        self._audit.log_action(session.user_id, "TOKEN_REFRESH", "session", str(session.id))
        return RefreshResult(access_token=new_token, expires_in=access_ttl, session_id=session.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_user(self, identity: Identity) -> User:
        user = self._users.get_by_id(identity.user_id)
        if user is None:
            # Cascade removes sessions with the user, so this only races a delete.
            raise AuthenticationError("Session expired or invalid.", error_code="session_invalid")
        return user

    def list_sessions(self, identity: Identity) -> list[Session]:
        return self._sessions.list_active_for_user(identity.user_id)
