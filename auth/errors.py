"""
auth/errors.py -- Typed failure values for the auth core.

The service layer returns a Failure instead of raising for every expected
outcome (wrong password, unknown refresh token, duplicate username, ...).
Only the FastAPI seam (auth/dependencies.py, route helpers) wraps a Failure
in FailureError so the framework can abort the request; api/errors.py is the
one place that turns either into an HTTP response.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EXPIRED = "expired"
    REVOKED = "revoked"
    NOT_FOUND = "not_found"
    DUPLICATE_RESOURCE = "duplicate_resource"
    ACCESS_DENIED = "access_denied"
    VALIDATION_FAILED = "validation_failed"


class TokenFailure(str, Enum):
    """Why an access token did not validate. Never surfaced to clients."""

    EMPTY = "empty"
    MALFORMED = "malformed"
    UNSUPPORTED = "unsupported"
    EXPIRED = "expired"
    SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass(frozen=True)
class Failure:
    """An expected, typed failure of an auth operation.

    field names the offending input where one exists (e.g. "username" for a
    duplicate registration).
    """

    kind: FailureKind
    message: str
    field: str | None = None


class FailureError(Exception):
    """Carries a Failure out of a FastAPI dependency or route helper."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


def unwrap(result):
    """Return result unchanged, or raise FailureError if it is a Failure."""
    if isinstance(result, Failure):
        raise FailureError(result)
    return result
