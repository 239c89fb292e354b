"""
auth/tokens.py -- Access-token codec and refresh-token generation.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (username), roles (comma-joined), iat, exp and iss. validate()
       never raises: it returns TokenClaims or a TokenFailure, and the auth
       gate turns any failure into "unauthenticated".

  Key length: the HMAC key is the UTF-8 bytes of SECRET_KEY. Anything under
       256 bits is rejected when the codec is built (startup), on top of the
       same check in core.config.Settings [M6].

  Expiry before signature: exp is read from the unverified payload first, so
       an expired token reports EXPIRED whatever its signature. Reading
       unverified claims is safe here because the only outcome is a rejection.

  Canonical signatures: the signature segment must re-encode to itself, so
       the spare bits of its last base64url character cannot be flipped.

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. They
       are opaque server-side records, not JWTs.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError
from jose.utils import base64url_decode, base64url_encode

from auth.errors import TokenFailure
from auth.models import TokenClaims
from core.config import MIN_SECRET_BYTES

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("staffdesk.auth")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "iat", "exp", "iss")


class TokenCodec:
    """Signs and verifies compact HS256 access tokens.

    Immutable after construction, so one instance is shared by every request.

    Usage:
        codec = TokenCodec(settings.secret_key, issuer="staffdesk", ttl_seconds=900)
        token = codec.issue("alice", ["ROLE_USER"])
        claims = codec.validate(token)   # TokenClaims or TokenFailure
    """

    def __init__(self, secret_key: str, issuer: str, ttl_seconds: int) -> None:
        if len(secret_key.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ValueError(f"Signing key must be at least {MIN_SECRET_BYTES * 8} bits.")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self._secret_key = secret_key
        self.issuer = issuer
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCodec:
        return cls(settings.secret_key, settings.token_issuer, settings.access_token_expire_seconds)

    def issue(self, subject: str, roles: list[str] | tuple[str, ...], issued_at: datetime | None = None) -> str:
        """Encode a signed access token for subject.

        Args:
            subject:   Username, stored as the sub claim.
            roles:     Role names, stored comma-joined in the roles claim.
            issued_at: Override for iat (defaults to now). exp is always
                       iat + ttl_seconds.
        """
        issued = issued_at or datetime.now(timezone.utc)
        iat = int(issued.timestamp())
        payload = {
            "sub": subject,
            "roles": ",".join(roles),
            "iat": iat,
            "exp": iat + self.ttl_seconds,
            "iss": self.issuer,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str | None) -> TokenClaims | TokenFailure:
        """Parse and verify structure, algorithm, expiry, signature and issuer.

        Side-effect free. Every failure is returned, never raised.
        """
        if token is None or not token.strip():
            return TokenFailure.EMPTY

        try:
            header = jwt.get_unverified_header(token)
            unverified = jwt.get_unverified_claims(token)
        except JWTError:
            return TokenFailure.MALFORMED

        if header.get("alg") != _ALGORITHM:
            return TokenFailure.UNSUPPORTED
        if any(name not in unverified for name in _REQUIRED_CLAIMS):
            return TokenFailure.MALFORMED
        exp = unverified["exp"]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return TokenFailure.MALFORMED
        if exp < time.time():
            return TokenFailure.EXPIRED
        if not _canonical_signature(token):
            return TokenFailure.SIGNATURE_MISMATCH

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], issuer=self.issuer)
        except ExpiredSignatureError:
            # exp passed between the pre-check and here
            return TokenFailure.EXPIRED
        except JWTClaimsError:
            return TokenFailure.UNSUPPORTED
        except JWTError:
            # Structure and algorithm were already accepted above, so the
            # remaining JWS failure is the signature itself.
            return TokenFailure.SIGNATURE_MISMATCH

        if not isinstance(payload.get("sub"), str) or not isinstance(payload.get("roles", ""), str):
            return TokenFailure.UNSUPPORTED
        return TokenClaims(
            subject=payload["sub"],
            roles=tuple(r for r in payload.get("roles", "").split(",") if r),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            issuer=payload["iss"],
        )


def _canonical_signature(token: str) -> bool:
    """True if the signature segment re-encodes to exactly itself.

    base64url decoding ignores the unused low bits of the last character, so
    several spellings of one signature decode to the same bytes. Only the
    spelling issue() produces is accepted.
    """
    signature = token.rsplit(".", 1)[-1]
    try:
        return base64url_encode(base64url_decode(signature.encode("ascii"))).decode("ascii") == signature
    except ValueError:
        return False


def subject_of(claims: TokenClaims) -> str:
    return claims.subject


def roles_of(claims: TokenClaims) -> tuple[str, ...]:
    return claims.roles


def generate_refresh_token() -> str:
    """Return a new opaque refresh token (256 bits, URL-safe)."""
    return secrets.token_urlsafe(32)
