"""
auth/dependencies.py -- Auth gate and role gate.

Two stages, strictly in this order:
  1. authenticate_request() -- called once per request by the auth gate
     middleware in api/main.py. Extracts "Authorization: Bearer <token>",
     validates it, resolves the user and returns an AuthContext, or None.
     It never raises: a bad token, an unknown subject or a broken directory
     lookup all mean "continue unauthenticated". Rejection is left to the
     route dependencies below, which see the missing context.
  2. require_operation() -- FastAPI Depends() factory that consults the
     OPERATION_ROLES table before the route body runs.

The context is stored on request.state only, never in module state, so it
lives exactly as long as the request.

Layer rule: no imports from api/. This module may import from fastapi
(Depends/Request) because it is part of the FastAPI dependency system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import Failure, FailureError, FailureKind, TokenFailure
from auth.models import ROLE_ADMIN, AuthContext
from auth.store import UserStore
from auth.tokens import TokenCodec, subject_of

logger = logging.getLogger("staffdesk.auth")

_BEARER_PREFIX = "Bearer "

# Operation name -> required role. Routes name their operation through
# require_operation(); anything not listed here is denied.
OPERATION_ROLES: dict[str, str] = {
    "users.grant_admin": ROLE_ADMIN,
}


# ---------------------------------------------------------------------------
# Auth gate
# ---------------------------------------------------------------------------


def is_public_path(path: str, public_paths: list[str]) -> bool:
    return any(path.startswith(prefix) for prefix in public_paths)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token after a case-sensitive "Bearer " prefix, else None."""
    if authorization and authorization.startswith(_BEARER_PREFIX):
        return authorization[len(_BEARER_PREFIX) :]
    return None


def authenticate_request(authorization: str | None, codec: TokenCodec, users: UserStore) -> AuthContext | None:
    """Resolve an Authorization header to an AuthContext.

    Returns None when the header is absent or not a Bearer header, the token
    fails validation, the subject no longer exists, the account is disabled
    or locked, or anything else goes wrong. Exceptions are logged, not raised.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        return None
    try:
        claims = codec.validate(token)
        if isinstance(claims, TokenFailure):
            logger.warning("Rejected access token: %s", claims.value)
            return None
        user = users.get_by_username(subject_of(claims))
        if user is None:
            logger.warning("Access token subject no longer exists: %s", claims.subject)
            return None
        if not user.can_authenticate:
            logger.warning("Access token for disabled or locked account: %s", user.username)
            return None
        logger.debug("User '%s' authenticated", user.username)
        return AuthContext(user=user, authorities=user.authorities)
    except Exception:
        logger.exception("Could not resolve authentication for request")
        return None


def get_auth_context(request: Request) -> AuthContext | None:
    """Soft variant: the context attached by the auth gate, or None."""
    return getattr(request.state, "auth_context", None)


def require_auth_context(request: Request) -> AuthContext:
    """Require authentication. Raises FailureError (401) if the request has no context.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(context: AuthContext = Depends(require_auth_context)): ...
    """
    context = get_auth_context(request)
    if context is None:
        raise FailureError(Failure(FailureKind.INVALID_CREDENTIALS, "Authentication required. Please login."))
    return context


# ---------------------------------------------------------------------------
# Role gate
# ---------------------------------------------------------------------------


def normalize_role(role: str) -> str:
    """Accept "ADMIN" as shorthand for "ROLE_ADMIN"."""
    return role if role.startswith("ROLE_") else f"ROLE_{role}"


class RoleGate:
    """Checks an AuthContext against a table of operation -> required role."""

    def __init__(self, operation_roles: dict[str, str]) -> None:
        self.operation_roles = {op: normalize_role(role) for op, role in operation_roles.items()}

    def check(self, context: AuthContext | None, operation: str) -> Failure | None:
        """Return None if allowed, else an ACCESS_DENIED Failure.

        Unknown operations are denied.
        """
        required = self.operation_roles.get(operation)
        if context is None or required is None or not context.has_role(required):
            who = context.username if context else "anonymous"
            logger.warning("Access denied: %s -> %s", who, operation)
            return Failure(FailureKind.ACCESS_DENIED, "You don't have permission to access this resource")
        return None


role_gate = RoleGate(OPERATION_ROLES)


def require_operation(operation: str) -> Callable[..., AuthContext]:
    """Build a dependency that authenticates (401) and then checks the role table (403).

    Use as a FastAPI dependency:
        @router.put("/admin-only")
        def route(context: AuthContext = Depends(require_operation("users.grant_admin"))): ...
    """

    def dependency(context: AuthContext = Depends(require_auth_context)) -> AuthContext:
        failure = role_gate.check(context, operation)
        if failure is not None:
            raise FailureError(failure)
        return context

    return dependency
