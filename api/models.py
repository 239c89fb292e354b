"""
API request and response models for StaffDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON field names are camelCase on the wire (usernameOrEmail, accessToken);
Python attributes stay snake_case through alias_generator=to_camel.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import LoginResult, User
from auth.passwords import MAX_PASSWORD_BYTES

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
NON_BLANK = r"\S"

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    model_config = _CAMEL

    username: str = Field(min_length=3, max_length=50)
    email: str = Field(max_length=100, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # Multi-byte characters count once against max_length but several times here.
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login. The identifier may be a username or an email."""

    model_config = _CAMEL

    username_or_email: str = Field(min_length=1, max_length=100, pattern=NON_BLANK)
    password: str = Field(min_length=1, max_length=128, pattern=NON_BLANK)


class RefreshRequest(BaseModel):
    model_config = _CAMEL

    refresh_token: str = Field(min_length=1, max_length=500, pattern=NON_BLANK)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    username: str
    email: str
    enabled: bool
    account_non_locked: bool
    roles: list[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method -- the domain-to-wire mapping lives with the output model."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            enabled=user.enabled,
            account_non_locked=user.account_non_locked,
            roles=sorted(user.authorities),
            created_at=user.audit.created_at,
            updated_at=user.audit.updated_at,
        )


class LoginResponse(BaseModel):
    """Response for login and refresh: both tokens plus the identity summary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user_id: int
    username: str
    email: str

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
            user_id=result.user.id,
            username=result.user.username,
            email=result.user.email,
        )


class ErrorResponse(BaseModel):
    """Uniform error body. validationErrors is present only for 400 validation failures."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str
    status: int
    error: str
    message: str
    path: str
    validation_errors: Optional[dict[str, str]] = None


class HealthResponse(BaseModel):
    """Response body for GET /api/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str]
