"""
auth/passwords.py -- bcrypt password hashing with timing equalization.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only reads the first 72 bytes of a password, and bcrypt 5.x raises
ValueError for anything longer. The API rejects longer passwords at
registration (RegisterRequest); hash() and verify() also cut the encoded
input to MAX_PASSWORD_BYTES so neither can raise on it.
"""

from __future__ import annotations

import bcrypt

MAX_PASSWORD_BYTES = 72

_DUMMY_PASSWORD = "staffdesk_timing_dummy"


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:MAX_PASSWORD_BYTES]


class PasswordHasher:
    """One-way adaptive hashing of passwords.

    Every hash() call embeds a fresh random salt, so the same input yields a
    different string each time; verify() reads the salt and cost back out of
    the stored hash.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-user login is not measurably
        # slower than later ones [C1].
        self._dummy_hash = self.hash(_DUMMY_PASSWORD)

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches. Malformed hashes return False."""
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt check so a missing user costs as much as a wrong password [C1]."""
        self.verify(plain, self._dummy_hash)
