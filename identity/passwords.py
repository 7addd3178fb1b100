"""
identity/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than a passlib wrapper: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x+ rejects.

bcrypt only looks at the first 72 bytes of its input. Current bcrypt
releases raise ValueError for longer input instead of truncating, so
_encode() truncates explicitly. hash() and verify() share it, so a long
password still verifies against its own hash.

The salt is embedded in the hash string; verify() needs nothing else.
PasswordHasher keeps no mutable state and is safe to share across threads.
"""

from __future__ import annotations

import bcrypt

from identity.errors import ValidationFailure

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """Salted, cost-parameterized one-way hashing for plaintext passwords.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("secret")
        hasher.verify("secret", stored)  # True
    """

    DEFAULT_ROUNDS = 12

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization hash. Computed once so authenticate() can spend
        # one bcrypt verification on unknown emails too.
        self._dummy_hash = self.hash("userdir_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises ValidationFailure for an empty password. Never fails otherwise.
        """
        if not plain:
            raise ValidationFailure("Password must not be empty")
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        Malformed or missing stored hashes yield False, never an exception.
        """
        if not plain or not hashed:
            return False
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def dummy_verify(self, plain: str) -> None:
        """Burn one verification's worth of CPU. Result is discarded."""
        self.verify(plain or "x", self._dummy_hash)
