"""Password policy applied before any secret is hashed."""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from enum import Enum

MAX_PASSWORD_LENGTH = 128


class PasswordRule(str, Enum):
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    DIGIT = "digit"
    SYMBOL = "symbol"


@dataclass(frozen=True, slots=True)
class PasswordValidation:
    """Outcome of :meth:`PasswordPolicy.validate` listing every failed rule."""

    failures: tuple[PasswordRule, ...]
    min_length: int

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def messages(self) -> list[str]:
        return [self._message(rule) for rule in self.failures]

    def _message(self, rule: PasswordRule) -> str:
        if rule is PasswordRule.MIN_LENGTH:
            return f"Password must be at least {self.min_length} characters long"
        if rule is PasswordRule.MAX_LENGTH:
            return f"Password must be at most {MAX_PASSWORD_LENGTH} characters long"
        if rule is PasswordRule.UPPERCASE:
            return "Password must contain at least one uppercase letter"
        if rule is PasswordRule.LOWERCASE:
            return "Password must contain at least one lowercase letter"
        if rule is PasswordRule.DIGIT:
            return "Password must contain at least one number"
        return "Password must contain at least one symbol"


@dataclass(frozen=True, slots=True)
class PasswordPolicy:
    """Minimum length plus, in strict mode, upper/lower/digit/symbol character classes."""

    min_length: int = 8
    require_complexity: bool = True

    @classmethod
    def from_settings(cls, settings) -> "PasswordPolicy":
        return cls(
            min_length=settings.password_min_length,
            require_complexity=settings.password_require_complexity,
        )

    @staticmethod
    def normalize(plaintext: str) -> str:
        """NFKC-normalise so visually identical secrets hash identically."""
        return unicodedata.normalize("NFKC", plaintext)

    def validate(self, plaintext: str) -> PasswordValidation:
        password = self.normalize(plaintext or "")
        failures: list[PasswordRule] = []

        if len(password) < self.min_length:
            failures.append(PasswordRule.MIN_LENGTH)
        if len(password) > MAX_PASSWORD_LENGTH:
            failures.append(PasswordRule.MAX_LENGTH)

        if self.require_complexity:
            if not any(ch.isupper() for ch in password):
                failures.append(PasswordRule.UPPERCASE)
            if not any(ch.islower() for ch in password):
                failures.append(PasswordRule.LOWERCASE)
            if not any(ch.isdigit() for ch in password):
                failures.append(PasswordRule.DIGIT)
            if not any(not ch.isalnum() and not ch.isspace() for ch in password):
                failures.append(PasswordRule.SYMBOL)

        return PasswordValidation(failures=tuple(failures), min_length=self.min_length)
