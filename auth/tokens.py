"""
auth/tokens.py -- JWT issuance/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. TokenIssuer is constructed with the signing
       secret (injected from Settings by the lifespan), never reading it from
       a module global. Two token shapes exist:
         access  -- sub=username, user_id, role, type="access"
         refresh -- sub=str(user_id), user_id, type="refresh"
       Every token carries a random jti so two logins by the same user in the
       same second still produce distinct strings (the sessions table keeps
       access tokens UNIQUE). verify_access()/verify_refresh() reject a token
       of the wrong shape even when its signature is valid, so a refresh token
       can never be replayed as a bearer token.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH enables timing
       equalization for unknown usernames so response time does not reveal
       whether an account exists [C1].

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

logger = logging.getLogger("gateway.auth.tokens")

_ALGORITHM = "HS256"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenError(Exception):
    """Base class for token verification failures. Never fatal to the process."""


class TokenMalformedError(TokenError):
    """Bad signature, bad encoding, or wrong claim shape."""


class TokenExpiredError(TokenError):
    """Signature valid but the exp claim has passed."""


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A corrupt stored hash is a
    mismatch, not a crash.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
DUMMY_HASH: str = hash_password("gateway_timing_dummy")


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Creates and verifies signed access and refresh tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key)
        token = issuer.issue_access_token(1, "admin", "admin", ttl=3600)
        claims = issuer.verify_access(token)
    """

    def __init__(self, secret_key: str, algorithm: str = _ALGORITHM) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def _encode(self, claims: dict, ttl: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue_access_token(self, user_id: int, username: str, role: str, ttl: int) -> str:
        return self._encode(
            {"sub": username, "user_id": user_id, "role": role, "type": ACCESS_TOKEN_TYPE},
            ttl,
        )

    def issue_refresh_token(self, user_id: int, ttl: int) -> str:
        return self._encode(
            {"sub": str(user_id), "user_id": user_id, "type": REFRESH_TOKEN_TYPE},
            ttl,
        )

    def verify(self, token: str) -> dict:
        """Check signature and expiry; return the claims.

        Raises TokenExpiredError when only the expiry failed and
        TokenMalformedError for everything else.
        """
        try:
            return jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("token expired") from exc
        except JWTError as exc:
            raise TokenMalformedError("token invalid") from exc

    def verify_access(self, token: str) -> dict:
        claims = self.verify(token)
        if (
            claims.get("type") != ACCESS_TOKEN_TYPE
            or not isinstance(claims.get("user_id"), int)
            or "role" not in claims
            or "sub" not in claims
        ):
            raise TokenMalformedError("not an access token")
        return claims

    def verify_refresh(self, token: str) -> dict:
        claims = self.verify(token)
        if claims.get("type") != REFRESH_TOKEN_TYPE or not isinstance(claims.get("user_id"), int):
            raise TokenMalformedError("not a refresh token")
        return claims
