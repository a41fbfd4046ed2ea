"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_identity() runs the Authenticator against the Authorization
header and records the Identity on request.state so the audit middleware can
attribute the request after the handler completes.

require_admin() wraps get_current_identity() and raises 403 if the caller's
CURRENT role (joined from users on every lookup) is not admin.

Both are plain `def` dependencies: the store calls block, so FastAPI runs
them in the threadpool instead of on the event loop.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the dependency injection system; nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.authenticator import Authenticator
from auth.models import Identity
from core.errors import AuthorizationError


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises AuthenticationError/AuthorizationError on failure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    authenticator: Authenticator = request.app.state.authenticator
    identity = authenticator.authenticate(request.headers.get("Authorization"))
    request.state.identity = identity
    return identity


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Require admin role. 401 if unauthenticated, 403 if not admin."""
    if identity.role != "admin":
        raise AuthorizationError("Insufficient permissions.")
    return identity
