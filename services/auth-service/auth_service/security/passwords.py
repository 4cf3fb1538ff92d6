"""Password hashing: Argon2id for new secrets, bcrypt accepted for legacy hashes."""

from __future__ import annotations

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def _is_argon2_hash(secret_hash: str) -> bool:
    return isinstance(secret_hash, str) and secret_hash.startswith("$argon2")


def _is_bcrypt_hash(secret_hash: str) -> bool:
    return isinstance(secret_hash, str) and secret_hash.startswith(_BCRYPT_PREFIXES)


class SecretHasher:
    """Slow, salted one-way hashing of account secrets."""

    def __init__(self, settings) -> None:
        self._hasher = PasswordHasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, secret_hash: str | None) -> bool:
        """Return True if ``plaintext`` matches; mismatches and unknown formats return False."""
        if not plaintext or not secret_hash:
            return False

        if _is_argon2_hash(secret_hash):
            try:
                return self._hasher.verify(secret_hash, plaintext)
            except (VerifyMismatchError, VerificationError, InvalidHash):
                return False

        if _is_bcrypt_hash(secret_hash):
            try:
                return bcrypt.checkpw(plaintext.encode("utf-8"), secret_hash.encode("utf-8"))
            except ValueError:
                return False

        return False

    def needs_rehash(self, secret_hash: str) -> bool:
        if _is_bcrypt_hash(secret_hash):
            return True
        try:
            return self._hasher.check_needs_rehash(secret_hash)
        except InvalidHash:
            return True

    def verify_dummy(self, plaintext: str) -> None:
        """Spend one verification's worth of work so unknown emails are not faster to reject."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("dummy-password-for-timing")
        self.verify(plaintext or "x", self._dummy_hash)
