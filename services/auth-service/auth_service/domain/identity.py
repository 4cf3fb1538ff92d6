from __future__ import annotations

from dataclasses import dataclass

from .account import Account, Role


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated caller attached to a request by the authentication dependency."""

    account_id: str
    role: Role
    tenant_id: str | None

    @classmethod
    def from_account(cls, account: Account) -> "Identity":
        return cls(account_id=account.account_id, role=account.role, tenant_id=account.tenant_id)

    @property
    def bypasses_tenant_scope(self) -> bool:
        return self.role is Role.SUPER_ADMIN
