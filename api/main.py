"""
api/main.py -- FastAPI application entry point for authgate.

Run with:      python main.py run
               uvicorn asgi:app

nginx sends every protected request to GET /auth via auth_request and
redirects 401s to /login. The app sits behind the proxy, so there is no CORS
or trusted-host layer here.

Middleware stack (outermost to innermost):
  1. log_requests      -- one access-log line per request with latency
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan wires the long-lived objects onto app.state at startup and releases
them at shutdown:
  settings  -- core.config.Settings
  store     -- auth.store.AuthStore (one engine; a connection per operation)
  cache     -- auth.cache.SessionCache (process lifetime, never torn down mid-run)
  sessions  -- auth.sessions.SessionManager composing the three above
  directory -- auth.ldap.LDAPDirectory when LDAP_ENABLED is set, else None
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.gateway import router as gateway_router
from auth.cache import SessionCache
from auth.credentials import CredentialCodec
from auth.ldap import LDAPDirectory
from auth.sessions import SessionManager
from auth.store import AuthStore
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


def build_directory(settings: Settings) -> LDAPDirectory | None:
    """The LDAP fallback for non-local usernames, or None when LDAP_ENABLED is off."""
    if not settings.ldap_enabled:
        return None
    return LDAPDirectory(settings.ldap_url, settings.ldap_organizational_unit, settings.ldap_domain_components)


def build_session_manager(settings: Settings, store: AuthStore, cache: SessionCache) -> SessionManager:
    """Compose the session manager from configuration. Shared by the API and the CLI."""
    return SessionManager(
        store,
        cache,
        CredentialCodec(),
        cookie_name=settings.cookie_name,
        domain=settings.domain,
        lifetime=timedelta(days=settings.cookie_lifetime_days),
        secure=settings.cookie_secure,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store, cache and session manager; close the store on shutdown."""
    logger.info("authgate starting up")
    settings = get_settings()
    app.state.settings = settings
    app.state.store = AuthStore(settings.db_url)
    app.state.cache = SessionCache()
    app.state.sessions = build_session_manager(settings, app.state.store, app.state.cache)
    app.state.directory = build_directory(settings)
    logger.info("Auth store initialized (domain=%s, ldap=%s)", settings.domain, settings.ldap_enabled)

    yield

    app.state.store.close()
    logger.info("authgate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authgate",
    description="Session authentication gateway for nginx auth_request.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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


app.include_router(gateway_router, tags=["Gateway"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
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

    Route handlers raise HTTPException with a dict detail; use it directly as
    the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected failures, including StoreError and CryptoError.

    Only the current request fails; the process keeps serving. The exception
    is logged server-side, never echoed to the client.
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
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return liveness and current version."""
    return HealthResponse(version=VERSION)
