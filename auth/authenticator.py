"""
auth/authenticator.py -- Per-request bearer token verification.

Each request starts Unauthenticated and ends either Authenticated (an
Identity is returned) or Rejected (a GatewayError is raised). Guards run in
order and the first failure wins:

  (a) header missing / not "Bearer <token>"   -> 401 no_token
  (b) bad signature or shape                  -> 401 invalid_token
      expired signature                       -> 401 token_expired
  (c) no live session row for the token       -> 401 session_invalid
  (d) owning user deactivated                 -> 403 account_disabled
  (e) otherwise                               -> Identity, one activity write

Guard (c) uses one message for "never issued", "logged out" and "session row
expired" so a caller cannot tell which happened.

This module knows nothing about FastAPI. auth/dependencies.py adapts it to
Depends().
"""

from __future__ import annotations

import logging

from auth.models import Identity
from auth.sessions import SessionStore
from auth.tokens import TokenExpiredError, TokenIssuer, TokenMalformedError
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("gateway.auth")

_BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an Authorization header, or None if absent/malformed."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


class Authenticator:
    def __init__(self, issuer: TokenIssuer, sessions: SessionStore) -> None:
        self._issuer = issuer
        self._sessions = sessions

    def authenticate(self, authorization: str | None) -> Identity:
        """Resolve an Authorization header value to an Identity or raise."""
        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthenticationError("No token provided.", error_code="no_token")

        try:
            self._issuer.verify_access(token)
        except TokenExpiredError as exc:
            raise AuthenticationError("Token expired.", error_code="token_expired") from exc
        except TokenMalformedError as exc:
            raise AuthenticationError("Invalid token.", error_code="invalid_token") from exc

        session = self._sessions.find_by_access_token(token)
        if session is None:
            raise AuthenticationError("Session expired or invalid.", error_code="session_invalid")

        if not session.user_active:
            logger.info("Rejected request for disabled account user_id=%d", session.user_id)
            raise AuthorizationError("Account disabled.", error_code="account_disabled")

        self._sessions.touch_activity(session.id)
        return Identity(
            user_id=session.user_id,
            username=session.username,
            email=session.email,
            role=session.role,
            session_id=session.id,
        )
