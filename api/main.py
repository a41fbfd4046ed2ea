"""
api/main.py -- FastAPI application entry point for the gateway.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost -- Starlette wraps the most recently
added middleware around the others, and @app.middleware registers last):
  1. log_requests          -- one access-log line per request
  2. audit_requests        -- one audit record per request, written after the
                              handler completes (429s included)
  3. SlowAPIMiddleware     -- enforces API_RATE_LIMIT on every route and
                              LOGIN_RATE_LIMIT on POST /api/auth/login
  4. CORSMiddleware        -- adds CORS headers for the configured frontend
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds every component from Settings (engine, stores, token issuer,
lockout policy, authenticator, lifecycle controller, audit log) and tears
them down symmetrically. Components are stored on app.state; nothing reads
configuration from a module global at request time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.audit import router as audit_router
from api.routes.auth import router as auth_router
from audit.store import AuditLog
from auth.authenticator import Authenticator
from auth.lifecycle import SessionLifecycle, TokenPolicy
from auth.lockout import LockoutPolicy
from auth.sessions import SessionStore
from auth.store import UserStore, create_store_engine
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings
from core.errors import GatewayError

_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gateway.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, settings: Settings, audit_background: bool = True) -> None:
    """Build every component from settings and attach it to app.state.

    Order follows the dependency graph: engine -> stores -> issuer/policy ->
    authenticator -> lifecycle. Tests call this from a patched lifespan with
    their own Settings and audit_background=False.
    """
    engine = create_store_engine(settings.database_url, settings.db_timeout_seconds)
    user_store = UserStore(engine)
    session_store = SessionStore(engine)
    issuer = TokenIssuer(settings.secret_key)
    lockout = LockoutPolicy(settings.max_failed_login_attempts, settings.lockout_seconds)
    audit = AuditLog(engine, enabled=settings.audit_enabled, background=audit_background)

    app.state.settings = settings
    app.state.engine = engine
    app.state.user_store = user_store
    app.state.session_store = session_store
    app.state.audit = audit
    app.state.authenticator = Authenticator(issuer, session_store)
    app.state.lifecycle = SessionLifecycle(
        users=user_store,
        sessions=session_store,
        issuer=issuer,
        lockout=lockout,
        audit=audit,
        token_policy=TokenPolicy(
            access_ttl=settings.access_token_expire_seconds,
            remember_me_ttl=settings.remember_me_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
        ),
    )


def close_state(app: FastAPI) -> None:
    app.state.audit.close()
    app.state.engine.dispose()


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete sessions whose access and refresh windows have both closed.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. A store failure is
    logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(app.state.session_store.purge_expired)
        except GatewayError:
            logger.warning("Session purge failed; will retry in %ds", interval)
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime."""
    logger.info("Gateway API starting up")
    init_state(app, _settings)
    logger.info("Stores initialized (%s)", app.state.engine.url.get_backend_name())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    close_state(app)
    logger.info("Gateway API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Catalog Gateway API",
    description="Authentication, session lifecycle and audit logging for the catalog backend.",
    version=_VERSION,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging and audit middleware
#
# Pattern: Interceptor. Both run after call_next returns, so they observe the
# final status code without touching response internals. The audit write is
# handed to AuditLog's background worker and never delays the response.
# ---------------------------------------------------------------------------


async def _json_body(request: Request) -> Any:
    """Return the parsed JSON request body, or None for empty or non-JSON bodies.

    Starlette caches the body, so the route handler still receives it.
    """
    if "application/json" not in request.headers.get("Content-Type", ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


@app.middleware("http")
async def audit_requests(request: Request, call_next):
    start = time.perf_counter()
    body = await _json_body(request)
    response = await call_next(request)
    audit: AuditLog | None = getattr(request.app.state, "audit", None)
    if audit is not None:
        identity = getattr(request.state, "identity", None)
        user_id = identity.user_id if identity is not None else getattr(request.state, "audit_user_id", None)
        audit.log_request(
            user_id=user_id,
            method=request.method,
            path=request.url.path,
            query=dict(request.query_params),
            status_code=response.status_code,
            duration_ms=(time.perf_counter() - start) * 1000,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
            body=body,
        )
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(audit_router, prefix="/api/audit", tags=["Audit"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render the auth core's error taxonomy.

    Extra fields (lockedUntil, attemptsRemaining) sit next to code and
    message inside the error object.
    """
    if exc.status_code >= 500:
        logger.error("Internal failure on %s %s: %s", request.method, request.url.path, exc.__cause__ or exc)
    error = ErrorDetail(
        code=exc.error_code,
        message=exc.message,
        detail=str(exc.__cause__) if exc.status_code >= 500 and _settings.debug and exc.__cause__ else None,
        **exc.extra,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content={"error": error.model_dump(exclude_none=True)},
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly and uses the
    return value as the response.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests from this IP, please try again later.",
                detail=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with structured error when the body or query params are malformed."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404, 405).

    Registered on the Starlette base class so router-level 404/405 responses
    are covered too, not only HTTPExceptions raised by handlers.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the server log only. Clients receive a generic
    message, plus the exception text when DEBUG=true.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
                detail=repr(exc) if _settings.debug else None,
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers must not be
# throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
@limiter.exempt
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=_VERSION,
        components={"app": "ok", "database": database},
    )
