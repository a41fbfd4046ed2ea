"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware and exempt /health) and in
api/routes/auth.py (for the failed-login limit).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits come from Settings: API_RATE_LIMIT is the default for every route
(applied by SlowAPIMiddleware), LOGIN_RATE_LIMIT caps failed attempts on
POST /login. Both are keyed by client IP and share the limiter's storage.
"""

from limits import parse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from slowapi.wrappers import Limit
from starlette.requests import Request

from core.config import Settings, get_settings


def build_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.api_rate_limit],
        storage_uri="memory://",
    )


class FailedLoginLimit:
    """Per-IP limit that only failed login attempts consume.

    check() runs before the credentials are looked at; record_failure() runs
    once the attempt has failed. A successful login never touches the counter.
    """

    _SCOPE = "login-failures"

    def __init__(self, limiter: Limiter, limit_value: str) -> None:
        self._limiter = limiter
        self._item = parse(limit_value)
        self._limit = Limit(
            self._item,
            get_remote_address,
            self._SCOPE,
            per_method=False,
            methods=None,
            error_message=None,
            exempt_when=None,
            cost=1,
            override_defaults=True,
        )

    def check(self, request: Request) -> None:
        if self._limiter.enabled and not self._limiter.limiter.test(self._item, get_remote_address(request), self._SCOPE):
            raise RateLimitExceeded(self._limit)

    def record_failure(self, request: Request) -> None:
        if self._limiter.enabled:
            self._limiter.limiter.hit(self._item, get_remote_address(request), self._SCOPE)


limiter = build_limiter(get_settings())
login_limit = FailedLoginLimit(limiter, get_settings().login_rate_limit)
