"""
api/main.py -- FastAPI application entry point for AdminGate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces rate limits from api.limiter

Lifespan builds the service graph (store -> codec -> session manager / gate)
on startup and stores it on app.state; it also runs the periodic sweep of
expired refresh-token records. A missing signing key or admin credential
raises Misconfigured here, so the process never starts half-configured.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import (
    MSG_RATE_LIMITED,
    MSG_SERVER_ERROR,
    MSG_VALIDATION_FAILED,
    ErrorResponse,
    FieldError,
    HealthResponse,
    SuccessResponse,
    envelope,
)
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.gate import RequestGate
from auth.session import SessionManager
from auth.store import IdentityStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings

API_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("admingate.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, settings: Settings, store: IdentityStore | None = None) -> None:
    """Construct the auth services and attach them to app.state.

    Tests call this with their own Settings and an isolated store.
    """
    store = store or IdentityStore(settings.database_url)
    codec = TokenCodec.from_settings(settings)
    app.state.settings = settings
    app.state.store = store
    app.state.sessions = SessionManager(store, codec, settings)
    app.state.gate = RequestGate(store, codec)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Sweep expired refresh-token records every interval_seconds.

    Verification never depends on this having run; it only keeps the table
    small. CancelledError from task.cancel() during shutdown propagates out
    of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.sessions.cleanup_expired_tokens)
        except Exception:
            logger.exception("Refresh-token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services on startup, tear them down on shutdown."""
    logger.info("AdminGate API starting up (environment=%s)", _settings.environment)
    build_services(app, _settings)
    logger.info("Auth initialized (admin=%s)", _settings.admin_email)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("AdminGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AdminGate API",
    description="Token issuance, rotation, and revocation for a single administrative account.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,  # refresh cookie must cross the SPA origin
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path == "/api/health":
        return response
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"success": false, "error": ...} envelope so
# clients parse failures uniformly. Internal detail never reaches the body.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth taxonomy to status + generic message.

    Context (code, path, address) goes to the log, not the response.
    """
    logger.info(
        "Auth failure code=%s status=%d %s %s ip=%s",
        exc.code,
        exc.status_code,
        request.method,
        request.url.path,
        request.client.host if request.client else "unknown",
    )
    return JSONResponse(status_code=exc.status_code, content=envelope(ErrorResponse(error=exc.message)))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", None) or exc.limit.limit.get_expiry())
    logger.warning(
        "Rate limit exceeded %s %s ip=%s",
        request.method,
        request.url.path,
        request.client.host if request.client else "unknown",
    )
    response = JSONResponse(
        status_code=429,
        content=envelope(ErrorResponse(error=MSG_RATE_LIMITED, retry_after=retry_after)),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when the body fails validation.

    Submitted values are never echoed back -- the body may contain a password.
    """
    details = [
        FieldError(
            field=".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            message=str(err.get("msg", "")).removeprefix("Value error, "),
        )
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=envelope(ErrorResponse(error=MSG_VALIDATION_FAILED, details=details)),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404, 405) and explicit HTTPExceptions in the same envelope."""
    return JSONResponse(status_code=exc.status_code, content=envelope(ErrorResponse(error=str(exc.detail))))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=envelope(ErrorResponse(error=MSG_SERVER_ERROR)),
    )


# ---------------------------------------------------------------------------
# Health and welcome endpoints
#
# Defined directly here so they are reachable regardless of router state.
# Health is exempt from rate limiting -- monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
@limiter.exempt
async def health(request: Request) -> dict:
    """Return API liveness."""
    return envelope(HealthResponse(timestamp=datetime.now(timezone.utc)))


@app.get("/api/", tags=["Health"])
async def welcome() -> dict:
    return envelope(SuccessResponse(message="Welcome to AdminGate API", data={"version": API_VERSION}))
