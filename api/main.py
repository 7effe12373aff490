"""
api/main.py -- FastAPI application entry point for the catalog.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps each newly added
middleware around the ones added before it):
  1. log_requests          -- one log line per request with latency
  2. session_identity      -- resolves the session cookie to a principal
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the auth core (hasher, stores, authenticator, session
manager) once and tears it down symmetrically. There is no process-wide
auth registry: routes reach these objects through app.state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.authenticator import Authenticator, GuestBootstrapPolicy
from auth.dependencies import load_session
from auth.errors import StoreUnavailable
from auth.passwords import PasswordHasher
from auth.session import SessionManager
from auth.sessions import SessionStore
from auth.store import CredentialStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("catalog.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_once(app: FastAPI) -> int:
    """Delete expired sessions once. A store outage is logged, not raised."""
    try:
        removed = await run_in_threadpool(app.state.session_store.purge_expired)
    except StoreUnavailable:
        logger.exception("Session purge failed; retrying next cycle")
        return 0
    if removed:
        logger.info("Purged %d expired sessions", removed)
    return removed


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired sessions every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        await _purge_once(app)


def build_auth_core(app: FastAPI, credential_store: CredentialStore, session_store: SessionStore) -> None:
    """Wire the authenticator and session manager onto app.state.

    Split out of lifespan so tests can inject their own stores.
    """
    settings = get_settings()
    app.state.credential_store = credential_store
    app.state.session_store = session_store
    app.state.authenticator = Authenticator(
        credential_store,
        credential_store.hasher,
        GuestBootstrapPolicy(
            username=settings.guest_username,
            password=settings.guest_password,
            enabled=settings.guest_bootstrap_enabled,
        ),
    )
    app.state.session_manager = SessionManager(
        session_store,
        credential_store,
        secret_key=settings.secret_key,
        role=settings.principal_role,
        max_age=settings.session_max_age_seconds,
    )


def _log_startup_state(credential_store: CredentialStore) -> None:
    settings = get_settings()
    logger.info(
        "Auth initialized (principals=%d, guest_bootstrap=%s)",
        credential_store.count(),
        settings.guest_bootstrap_enabled,
    )
    if not credential_store.has_principals() and not settings.guest_bootstrap_enabled:
        logger.warning("No users registered and guest bootstrap is off; create one with 'catalog create-user'")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. A StoreUnavailable here aborts startup -- there is no point
    serving requests without a credential store.
    """
    settings = get_settings()
    logger.info("Catalog API starting up")
    hasher = PasswordHasher(rounds=settings.kdf_rounds)
    credential_store = CredentialStore(settings.database_url, hasher=hasher)
    session_store = SessionStore(settings.database_url, ttl=settings.session_max_age_seconds)
    build_auth_core(app, credential_store, session_store)
    _log_startup_state(credential_store)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    session_store.close()
    credential_store.close()
    logger.info("Catalog API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Catalog",
    description="Catalog web application -- authentication and session identity.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() call wraps the stack built so far, so the last one
# registered sees the request first.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Session identity middleware
#
# Every request gets request.state.sid / request.state.principal before any
# route runs. Deserialization happens here, explicitly, once per request.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def session_identity(request: Request, call_next):
    await load_session(request)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered after session_identity so it wraps it and the logged latency
# includes session resolution.
# ---------------------------------------------------------------------------


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors, including StoreUnavailable.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and credential store reachability."""
    try:
        request.app.state.credential_store.count()
        database = "ok"
    except StoreUnavailable:
        logger.exception("Health check: credential store unavailable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
