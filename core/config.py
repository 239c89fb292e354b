"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for StaffDesk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 bytes (256 bits) is rejected outright. The
       HS256 signing key is derived directly from it, so a short secret is a
       startup failure, never a per-request one.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("staffdesk.config")

MIN_SECRET_BYTES = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.

    List fields (public_paths, cors_origins) are read as JSON arrays, e.g.
    PUBLIC_PATHS='["/api/auth/login", "/api/health"]'.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///staffdesk_auth.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_issuer: str = "staffdesk"
    access_token_expire_seconds: int = 900
    refresh_token_expire_days: int = 7
    bcrypt_rounds: int = 12

    # Expired refresh tokens are purged in bulk on this interval.
    purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Prefix matches. The auth gate skips token validation for these.
    public_paths: list[str] = [
        "/api/auth/register",
        "/api/auth/login",
        "/api/auth/refresh",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/health",
    ]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # First-run admin (all three must be set; empty disables bootstrap)
    # ------------------------------------------------------------------

    bootstrap_admin_username: str = ""
    bootstrap_admin_email: str = ""
    bootstrap_admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 bytes [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_BYTES} bytes (256 bits).")
        if self.access_token_expire_seconds <= 0 or self.refresh_token_expire_days <= 0:
            raise ValueError("Token lifetimes must be positive.")
        return self

    @property
    def bootstrap_admin_enabled(self) -> bool:
        return bool(self.bootstrap_admin_username and self.bootstrap_admin_email and self.bootstrap_admin_password)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
