"""
auth/service.py -- Login, registration, renewal and logout orchestration.

Authenticator is the only component that mints tokens or writes to the
refresh-token store. Every expected failure comes back as a Failure value;
nothing here raises for wrong passwords, unknown tokens or duplicates.

Security:
  [C1] login() runs bcrypt whether or not the user exists, and the caller
       sees one INVALID_CREDENTIALS failure for unknown user, wrong password,
       disabled or locked account -- no account enumeration.
  Renewal does not rotate the refresh token: the same string is handed back
       on every successful renewal until logout or expiry.
  A renewal that already read its token can still succeed while a concurrent
       logout deletes it. No locking is attempted.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import Failure, FailureKind
from auth.models import ROLE_ADMIN, ROLE_USER, AuthContext, LoginResult, RefreshToken, User
from auth.passwords import PasswordHasher
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec, generate_refresh_token

logger = logging.getLogger("staffdesk.auth")

_BAD_CREDENTIALS = Failure(FailureKind.INVALID_CREDENTIALS, "Invalid username/email or password.")


class Authenticator:
    """Credential lifecycle: login, register, renew, logout, role grants.

    Usage:
        auth = Authenticator(user_store, refresh_store, hasher, codec)
        result = auth.login("alice", "Passw0rd!")
        if isinstance(result, Failure): ...
    """

    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        refresh_token_ttl: timedelta = timedelta(days=7),
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.hasher = hasher
        self.codec = codec
        self.refresh_token_ttl = refresh_token_ttl

    # ------------------------------------------------------------------
    # Login / register
    # ------------------------------------------------------------------

    def login(self, username_or_email: str, password: str) -> LoginResult | Failure:
        logger.info("Login attempt for %s", username_or_email)
        user = self.users.get_by_username_or_email(username_or_email)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.verify_dummy(password)
            return _BAD_CREDENTIALS
        if not self.hasher.verify(password, user.hashed_password):
            return _BAD_CREDENTIALS
        if not user.can_authenticate:
            logger.info("Login refused for disabled or locked account %s", user.username)
            return _BAD_CREDENTIALS

        refresh_token = self._create_refresh_token(user)
        logger.info("User logged in: %s", user.username)
        return self._login_result(user, refresh_token)

    def register(self, username: str, email: str, password: str) -> User | Failure:
        logger.info("Registration attempt for %s", username)
        if self.users.exists_by_username(username):
            return Failure(FailureKind.DUPLICATE_RESOURCE, f"Username already exists: {username}", field="username")
        if self.users.exists_by_email(email):
            return Failure(FailureKind.DUPLICATE_RESOURCE, f"Email already exists: {email}", field="email")
        if self.users.get_role(ROLE_USER) is None:
            return Failure(FailureKind.NOT_FOUND, "Default role not found")

        user = User(username=username, email=email, hashed_password=self.hasher.hash(password))
        try:
            user_id = self.users.create_user(user, [ROLE_USER])
        except IntegrityError:
            # A concurrent registration won the unique index.
            return Failure(FailureKind.DUPLICATE_RESOURCE, "Username or email already exists")

        logger.info("User registered: %s", username)
        return self.users.get_by_id(user_id)

    def bootstrap_admin(self, username: str, email: str, password: str) -> User | None:
        """Create an admin account on first run. Returns None if the username is taken."""
        if self.users.exists_by_username(username) or self.users.exists_by_email(email):
            return None
        user = User(username=username, email=email, hashed_password=self.hasher.hash(password))
        user_id = self.users.create_user(user, [ROLE_USER, ROLE_ADMIN])
        logger.info("Bootstrap admin created: %s", username)
        return self.users.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def renew(self, refresh_token: str) -> LoginResult | Failure:
        """Exchange a refresh token for a new access token.

        An expired token is deleted as a side effect, so a second attempt
        with it reports NOT_FOUND. A revoked token is left in place.
        """
        logger.info("Token refresh attempt")
        stored = self.refresh_tokens.get_by_token(refresh_token)
        if stored is None:
            return Failure(FailureKind.NOT_FOUND, "Refresh token not found")
        if stored.is_expired():
            self.refresh_tokens.delete(stored.id)
            return Failure(FailureKind.EXPIRED, "Refresh token has expired")
        if stored.revoked:
            return Failure(FailureKind.REVOKED, "Refresh token has been revoked")

        user = self.users.get_by_id(stored.user_id)
        if user is None:
            return Failure(FailureKind.NOT_FOUND, "User not found")

        logger.info("Token refreshed for %s", user.username)
        return self._login_result(user, stored.token)

    def logout(self, username: str) -> Failure | None:
        """Delete every refresh token the user holds. No tokens is not an error."""
        user = self.users.get_by_username(username)
        if user is None:
            return Failure(FailureKind.NOT_FOUND, f"User not found: {username}")
        removed = self.refresh_tokens.delete_for_user(user.id)
        logger.info("User logged out: %s (%d refresh tokens removed)", username, removed)
        return None

    def purge_expired_tokens(self, now: datetime | None = None) -> int:
        removed = self.refresh_tokens.delete_expired(now)
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed

    # ------------------------------------------------------------------
    # Principal / administration
    # ------------------------------------------------------------------

    def current_principal(self, context: AuthContext | None) -> User | Failure:
        if context is None:
            return Failure(FailureKind.INVALID_CREDENTIALS, "No authenticated user found")
        return context.user

    def grant_role(self, user_id: int, role_name: str) -> User | Failure:
        user = self.users.get_by_id(user_id)
        if user is None:
            return Failure(FailureKind.NOT_FOUND, "User not found")
        role = self.users.get_role(role_name)
        if role is None:
            return Failure(FailureKind.NOT_FOUND, f"Role not found: {role_name}")
        if self.users.add_role(user_id, role.id):
            logger.info("Granted %s to %s", role_name, user.username)
        return self.users.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_refresh_token(self, user: User) -> str:
        token = RefreshToken(
            token=generate_refresh_token(),
            user_id=user.id,
            expiry_date=datetime.now(timezone.utc) + self.refresh_token_ttl,
        )
        self.refresh_tokens.create(token)
        return token.token

    def _login_result(self, user: User, refresh_token: str) -> LoginResult:
        access_token = self.codec.issue(user.username, sorted(user.authorities))
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.ttl_seconds,
            user=user,
        )
