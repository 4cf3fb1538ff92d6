from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .lockout import LockoutState


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


@dataclass(slots=True)
class Account:
    """Aggregate root for a Church Planner login identity."""

    account_id: str
    email: str
    role: Role
    created_at: datetime
    name: str | None = None
    tenant_id: str | None = None
    failed_attempts: int = 0
    locked_until: datetime | None = None
    secret_changed_at: datetime | None = None
    sessions_revoked_at: datetime | None = None
    disabled: bool = False
    secret_hash: str | None = field(default=None, repr=False)

    @property
    def lockout_state(self) -> LockoutState:
        return LockoutState(failed_attempts=self.failed_attempts, locked_until=self.locked_until)

    def apply_lockout(self, state: LockoutState) -> None:
        self.failed_attempts = state.failed_attempts
        self.locked_until = state.locked_until

    def accepts_token_issued_at(self, issued_at: datetime) -> bool:
        """Tokens issued before the last password change or logout are revoked."""
        cutoffs = [stamp for stamp in (self.secret_changed_at, self.sessions_revoked_at) if stamp is not None]
        return not cutoffs or issued_at >= max(cutoffs)


@dataclass(slots=True)
class Tenant:
    """Isolation boundary (a church) that owns accounts and business resources."""

    tenant_id: str
    name: str
    created_at: datetime
