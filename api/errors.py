"""
api/errors.py -- The single boundary translator from failures to HTTP responses.

Every error the API returns has the same body:
    {timestamp, status, error, message, path}
plus validationErrors {field: message} for request validation failures.

Sources handled here:
  FailureError          -- typed auth failures raised by dependencies/routes
  RequestValidationError -- Pydantic body validation (400, not FastAPI's 422)
  HTTPException         -- framework errors (404 unknown route, 405, ...)
  RateLimitExceeded     -- slowapi (429)
  Exception             -- anything else (500, message withheld, logged)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorResponse
from auth.errors import Failure, FailureError, FailureKind

logger = logging.getLogger("staffdesk.api")

# FailureKind -> (HTTP status, "error" label)
FAILURE_STATUS: dict[FailureKind, tuple[int, str]] = {
    FailureKind.INVALID_CREDENTIALS: (401, "Unauthorized"),
    FailureKind.EXPIRED: (401, "Token Expired"),
    FailureKind.REVOKED: (401, "Token Revoked"),
    FailureKind.NOT_FOUND: (404, "Not Found"),
    FailureKind.DUPLICATE_RESOURCE: (409, "Conflict"),
    FailureKind.ACCESS_DENIED: (403, "Forbidden"),
    FailureKind.VALIDATION_FAILED: (400, "Validation Failed"),
}


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    validation_errors: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        status=status_code,
        error=error,
        message=message,
        path=request.url.path,
        validation_errors=validation_errors,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))


def failure_response(request: Request, failure: Failure) -> JSONResponse:
    status_code, error = FAILURE_STATUS[failure.kind]
    return error_response(request, status_code, error, failure.message)


def _field_name(loc: tuple) -> str:
    # ("body", "username") -> "username"; a whole-body error has no field part.
    parts = [str(p) for p in loc if p != "body"]
    return ".".join(parts) or "body"


def register_exception_handlers(app: FastAPI) -> None:
    """Install the uniform error body for every error source."""

    @app.exception_handler(FailureError)
    async def handle_failure(request: Request, exc: FailureError) -> JSONResponse:
        logger.warning("%s: %s - Path: %s", exc.failure.kind.value, exc.failure.message, request.url.path)
        return failure_response(request, exc.failure)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        validation_errors: dict[str, str] = {}
        for err in exc.errors():
            validation_errors.setdefault(_field_name(tuple(err.get("loc", ()))), err.get("msg", "Invalid value"))
        logger.warning("Validation failed: %s - Path: %s", validation_errors, request.url.path)
        return error_response(request, 400, "Validation Failed", "Invalid input data", validation_errors)

    # Sync on purpose: SlowAPIMiddleware calls this handler without awaiting it.
    @app.exception_handler(RateLimitExceeded)
    def handle_rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        response = error_response(request, 429, "Too Many Requests", "Too many requests. Try again later.")
        # exc.limit wraps the limits RateLimitItem that was exceeded.
        response.headers["Retry-After"] = str(exc.limit.limit.get_expiry())
        return response

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        try:
            error = HTTPStatus(exc.status_code).phrase
        except ValueError:
            error = "Error"
        message = exc.detail if isinstance(exc.detail, str) else error
        response = error_response(request, exc.status_code, error, message)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The raw exception goes to the log only, never to the response body.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return error_response(request, 500, "Internal Server Error", "An unexpected error occurred")
