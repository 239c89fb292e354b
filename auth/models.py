"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; these classes own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

ROLE_USER = "ROLE_USER"
ROLE_ADMIN = "ROLE_ADMIN"


@dataclass
class Role:
    """Reference data. Unique by name, never deleted in normal flow."""

    name: str  # "ROLE_USER", "ROLE_ADMIN"
    description: str = ""
    id: int | None = None


@dataclass
class AuditInfo:
    """Creation / modification timestamps (ISO 8601 UTC), embedded in entities."""

    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """A principal: identity, credential hash, account flags and roles.

    Authorities are derived from the role names, never stored separately.
    hashed_password must never leave the service layer -- API response
    models map only the public fields.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    enabled: bool = True
    account_non_locked: bool = True
    roles: list[Role] = field(default_factory=list)
    audit: AuditInfo = field(default_factory=AuditInfo)

    @property
    def authorities(self) -> frozenset[str]:
        return frozenset(r.name for r in self.roles)

    @property
    def can_authenticate(self) -> bool:
        return self.enabled and self.account_non_locked


@dataclass
class RefreshToken:
    """A renewal credential: opaque token bound to exactly one user.

    Expiry is time-derived (is_expired), revocation is explicit (revoked).
    The two are tracked independently.
    """

    token: str
    user_id: int
    expiry_date: datetime  # timezone-aware UTC
    revoked: bool = False
    id: int | None = None
    created_at: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now > self.expiry_date


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access token."""

    subject: str
    roles: tuple[str, ...]
    issued_at: int
    expires_at: int
    issuer: str


@dataclass(frozen=True)
class AuthContext:
    """Request-scoped association of a resolved user and its authorities.

    Created by the auth gate for one request and dropped when it completes.
    Never cached or shared across requests.
    """

    user: User
    authorities: frozenset[str]

    @property
    def username(self) -> str:
        return self.user.username

    def has_role(self, role: str) -> bool:
        return role in self.authorities


@dataclass
class LoginResult:
    """Tokens handed back by login and renewal, plus the owning user."""

    access_token: str
    refresh_token: str
    expires_in: int
    user: User
    token_type: str = "Bearer"
