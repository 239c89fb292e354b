"""
api/main.py -- FastAPI application entry point for StaffDesk.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware      -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware   -- enforces per-route rate limits from api.limiter
  3. log_requests        -- method, path, status, latency
  4. auth_gate           -- bearer token -> request.state.auth_context

Lifespan handles startup (stores, codec, authenticator, bootstrap admin,
purge task) and shutdown (cancel purge task, close DB) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.concurrency import run_in_threadpool

from api.errors import register_exception_handlers
from api.limiter import limiter
from api.models import HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from auth.dependencies import authenticate_request, is_public_path
from auth.passwords import PasswordHasher
from auth.service import Authenticator
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
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
logger = logging.getLogger("staffdesk.api")

# Read once at import: a bad SECRET_KEY stops the process here, before any
# request is served [M6].
_settings = get_settings()


def build_authenticator(settings: Settings, user_store: UserStore) -> Authenticator:
    """Wire the auth core from settings. Shared by lifespan and tests."""
    return Authenticator(
        users=user_store,
        refresh_tokens=RefreshTokenStore(user_store.engine),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        codec=TokenCodec.from_settings(settings),
        refresh_token_ttl=timedelta(days=settings.refresh_token_expire_days),
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh tokens on a fixed interval.

    Renewal already deletes an expired token when it sees one; this loop
    removes the ones nobody presents again. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and unwinds cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_in_threadpool(app.state.authenticator.purge_expired_tokens)
        except Exception:
            logger.exception("Refresh token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("StaffDesk API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.authenticator = build_authenticator(_settings, app.state.user_store)
    app.state.token_codec = app.state.authenticator.codec
    if _settings.bootstrap_admin_enabled:
        app.state.authenticator.bootstrap_admin(
            _settings.bootstrap_admin_username,
            _settings.bootstrap_admin_email,
            _settings.bootstrap_admin_password,
        )
    logger.info("Auth initialized (issuer=%s)", _settings.token_issuer)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, _settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("StaffDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="StaffDesk API",
    description="Authentication and access control for the StaffDesk administrative backend.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# @app.middleware("http") functions wrap everything registered before them,
# so the auth gate (registered first) runs innermost, right before routing.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def auth_gate(request: Request, call_next):
    """Attach an AuthContext to request.state for the duration of one request.

    Public paths skip token validation. On every other path a missing or bad
    token simply leaves auth_context as None; authenticate_request() never
    raises, so the request always continues. Routes that need a user reject
    it themselves. The context is cleared when the request ends, error paths
    included.
    """
    request.state.auth_context = None
    try:
        if not is_public_path(request.url.path, _settings.public_paths):
            request.state.auth_context = await run_in_threadpool(
                authenticate_request,
                request.headers.get("Authorization"),
                request.app.state.token_codec,
                request.app.state.user_store,
            )
        return await call_next(request)
    finally:
        request.state.auth_context = None


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


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Public and not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check database probe failed")
        components["database"] = "error"
    return HealthResponse(status="healthy", version=VERSION, components=components)
