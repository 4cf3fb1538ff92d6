"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from .account import Role


@dataclass(slots=True)
class CreateAccountInput:
    """Validated, already-hashed inputs required to persist an account."""

    email: str
    secret_hash: str
    role: Role = Role.USER
    tenant_id: str | None = None
    name: str | None = None


@dataclass(slots=True)
class RegisterInput:
    """Registration payload as received from the API layer."""

    email: str
    password: str
    name: str | None = None
    church_name: str | None = None


@dataclass(slots=True)
class PasswordResetRequest:
    """Handed to a :class:`ResetNotifier` so the raw token can be delivered out of band."""

    account_id: str
    email: str
    token: str
    expires_at: datetime


class ResetNotifier(Protocol):
    def send_reset(self, request: PasswordResetRequest) -> None: ...
