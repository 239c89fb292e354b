"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/register   -- create account with ROLE_USER; 201
  POST /api/auth/login      -- password login; access + refresh token
  POST /api/auth/refresh    -- new access token for a refresh token
  POST /api/auth/logout     -- delete all refresh tokens of the caller; 204
  GET  /api/auth/me         -- current user summary (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  [C1] Authenticator.login() provides timing equalization -- never inline
       a lookup + password check here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain def: bcrypt and SQLite calls block, so FastAPI runs them
on its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, RefreshRequest, RegisterRequest, UserResponse
from auth.dependencies import get_auth_context, require_auth_context
from auth.errors import unwrap
from auth.models import AuthContext
from auth.service import Authenticator
from core.config import get_settings

# Auth policy:
# - POST /api/auth/register: public
# - POST /api/auth/login:    public, rate limited
# - POST /api/auth/refresh:  public -- the refresh token is the credential
# - POST /api/auth/logout:   requires auth (require_auth_context)
# - GET  /api/auth/me:       requires auth (Authenticator.current_principal)
router = APIRouter()


def _authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def _login_rate_limit() -> str:
    # Resolved per request so LOGIN_RATE_LIMIT follows the current settings.
    return get_settings().login_rate_limit


def _token_response(result) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=LoginResponse.from_result(result).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Register a new account. Duplicate username or email returns 409 naming the field."""
    user = unwrap(_authenticator(request).register(body.username, body.email, body.password))
    return UserResponse.from_user(user)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # [H2] must be BELOW @router so the registered endpoint is the limited one
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username or email and password.

    Unknown user, wrong password, and disabled or locked accounts all return
    the same 401 so the response does not reveal which one happened.
    """
    result = unwrap(_authenticator(request).login(body.username_or_email, body.password))
    return _token_response(result)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access token. The refresh token is returned unchanged."""
    result = unwrap(_authenticator(request).renew(body.refresh_token))
    return _token_response(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", status_code=204)
def logout(request: Request, context: AuthContext = Depends(require_auth_context)) -> Response:
    """Delete every refresh token held by the caller.

    The access token in hand stays valid until its own expiry -- access
    tokens have no server-side record to revoke.
    """
    unwrap(_authenticator(request).logout(context.username))
    return Response(status_code=204)


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, context: AuthContext | None = Depends(get_auth_context)) -> UserResponse:
    """Return the summary of the currently authenticated user."""
    user = unwrap(_authenticator(request).current_principal(context))
    return UserResponse.from_user(user)
