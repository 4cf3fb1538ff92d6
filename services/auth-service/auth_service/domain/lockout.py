"""Failed-login lockout state machine.

States are ``Unlocked(failed_attempts=n)`` and ``Locked(until=t)``, both
represented by :class:`LockoutState`. Expired locks are healed lazily on every
evaluation, so no background job is needed to release accounts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True, slots=True)
class LockoutState:
    """Persisted lockout counters for one account."""

    failed_attempts: int = 0
    locked_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def remaining_seconds(self, now: datetime) -> int:
        if not self.is_locked(now):
            return 0
        return max(1, math.ceil((self.locked_until - now).total_seconds()))


@dataclass(frozen=True, slots=True)
class LockoutOutcome:
    """Result of applying a failed login to a :class:`LockoutState`."""

    state: LockoutState
    locked: bool
    newly_locked: bool
    remaining_seconds: int


@dataclass(frozen=True, slots=True)
class LockoutPolicy:
    """Threshold and duration for temporary account locks."""

    threshold: int = 5
    duration: timedelta = timedelta(minutes=15)

    @classmethod
    def from_settings(cls, settings) -> "LockoutPolicy":
        return cls(
            threshold=settings.lockout_threshold,
            duration=timedelta(seconds=settings.lockout_duration_seconds),
        )

    def evaluate(self, state: LockoutState, now: datetime) -> LockoutState:
        """Return the effective state, clearing a lock whose window has passed."""
        if state.locked_until is not None and state.locked_until <= now:
            return LockoutState()
        return state

    def register_failure(self, state: LockoutState, now: datetime) -> LockoutOutcome:
        """Apply one failed login attempt."""
        if state.is_locked(now):
            # Still locked: attempts are frozen until the window passes.
            return LockoutOutcome(
                state=state,
                locked=True,
                newly_locked=False,
                remaining_seconds=state.remaining_seconds(now),
            )

        current = self.evaluate(state, now)
        attempts = current.failed_attempts + 1
        if attempts >= self.threshold:
            locked = LockoutState(failed_attempts=attempts, locked_until=now + self.duration)
            return LockoutOutcome(
                state=locked,
                locked=True,
                newly_locked=True,
                remaining_seconds=locked.remaining_seconds(now),
            )
        return LockoutOutcome(
            state=LockoutState(failed_attempts=attempts),
            locked=False,
            newly_locked=False,
            remaining_seconds=0,
        )

    def register_success(self, state: LockoutState, now: datetime) -> LockoutState:
        """Clear the counters, unless a lock landed while the password was being checked."""
        if state.is_locked(now):
            return state
        return LockoutState()


def format_remaining(seconds: int) -> str:
    """Human readable remaining lock time, e.g. ``"14 minutes"``."""
    if seconds >= 60:
        minutes = math.ceil(seconds / 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
