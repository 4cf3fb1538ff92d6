"""Credential store: the only path by which secrets are hashed and lockout counters move."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from ..errors import NotFound, PasswordPolicyViolation
from ..security.passwords import SecretHasher
from .account import Account, Role
from .contracts import CreateAccountInput
from .lockout import LockoutOutcome, LockoutPolicy, LockoutState
from .password_policy import PasswordPolicy

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialRepository(Protocol):
    def find_by_email(self, email: str, *, include_secret: bool = False) -> Account | None: ...

    def get_account(self, account_id: str, *, include_secret: bool = False) -> Account | None: ...

    def create_account(self, payload: CreateAccountInput) -> Account: ...

    def update_secret(self, account_id: str, secret_hash: str, changed_at: datetime) -> Account: ...

    def update_details(self, account_id: str, *, name: str | None, email: str | None) -> Account | None: ...

    def revoke_sessions(self, account_id: str, revoked_at: datetime) -> None: ...

    def replace_secret_hash(self, account_id: str, secret_hash: str) -> None: ...

    def update_lockout(
        self, account_id: str, transition: Callable[[LockoutState], LockoutState]
    ) -> tuple[LockoutState, LockoutState] | None: ...

    def update_role(self, account_id: str, role: Role) -> Account | None: ...

    def update_tenant(self, account_id: str, tenant_id: str | None) -> Account | None: ...


class CredentialStore:
    """Owns account identity, hashed secrets and lockout counters."""

    def __init__(
        self,
        repository: CredentialRepository,
        hasher: SecretHasher,
        password_policy: PasswordPolicy,
        lockout_policy: LockoutPolicy,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._hasher = hasher
        self._password_policy = password_policy
        self._lockout_policy = lockout_policy
        self._clock = clock

    @property
    def lockout_policy(self) -> LockoutPolicy:
        return self._lockout_policy

    def now(self) -> datetime:
        return self._clock()

    def find_by_email(self, email: str, include_secret: bool = False) -> Account | None:
        """Look up by login email. The hash is only loaded when ``include_secret`` is set."""
        account = self._repository.find_by_email(email, include_secret=include_secret)
        return self._heal(account)

    def get_account(self, account_id: str, include_secret: bool = False) -> Account | None:
        account = self._repository.get_account(account_id, include_secret=include_secret)
        return self._heal(account)

    def create(
        self,
        email: str,
        plaintext: str,
        role: Role = Role.USER,
        tenant_id: str | None = None,
        name: str | None = None,
    ) -> Account:
        secret_hash = self._hash_validated(plaintext)
        return self._repository.create_account(
            CreateAccountInput(
                email=email,
                secret_hash=secret_hash,
                role=role,
                tenant_id=tenant_id,
                name=name,
            )
        )

    def verify_secret(self, account: Account, plaintext: str) -> bool:
        return self._hasher.verify(PasswordPolicy.normalize(plaintext or ""), account.secret_hash)

    def verify_dummy(self, plaintext: str) -> None:
        self._hasher.verify_dummy(plaintext)

    def update_secret(self, account_id: str, new_plaintext: str) -> Account:
        """Re-hash the secret and return the account to the unlocked state."""
        secret_hash = self._hash_validated(new_plaintext)
        return self._repository.update_secret(account_id, secret_hash, self._stamp())

    def rehash_if_needed(self, account: Account, plaintext: str) -> bool:
        """Upgrade a legacy or outdated hash after the plaintext has been verified."""
        if not account.secret_hash or not self._hasher.needs_rehash(account.secret_hash):
            return False
        normalized = PasswordPolicy.normalize(plaintext)
        self._repository.replace_secret_hash(account.account_id, self._hasher.hash(normalized))
        logger.info("upgraded password hash account=%s", account.account_id)
        return True

    def record_failed_attempt(self, account_id: str) -> LockoutOutcome:
        now = self._clock()
        outcomes: list[LockoutOutcome] = []

        def transition(state: LockoutState) -> LockoutState:
            outcome = self._lockout_policy.register_failure(state, now)
            outcomes.append(outcome)
            return outcome.state

        if self._repository.update_lockout(account_id, transition) is None:
            raise NotFound("User not found")
        return outcomes[-1]

    def record_successful_login(self, account_id: str) -> LockoutState:
        """Reset the counters and return the stored state.

        A lock written by a concurrent failure is left in place; callers must
        check the returned state before treating the login as successful.
        """
        now = self._clock()
        result = self._repository.update_lockout(
            account_id, lambda state: self._lockout_policy.register_success(state, now)
        )
        if result is None:
            raise NotFound("User not found")
        return result[1]

    def revoke_sessions(self, account_id: str) -> None:
        """Invalidate every token issued to the account so far."""
        self._repository.revoke_sessions(account_id, self._stamp())

    def update_details(self, account_id: str, *, name: str | None = None, email: str | None = None) -> Account:
        account = self._repository.update_details(account_id, name=name, email=email)
        if account is None:
            raise NotFound("User not found")
        return account

    def assign_role(self, account_id: str, role: Role) -> Account:
        account = self._repository.update_role(account_id, role)
        if account is None:
            raise NotFound("User not found")
        return account

    def assign_tenant(self, account_id: str, tenant_id: str | None) -> Account:
        account = self._repository.update_tenant(account_id, tenant_id)
        if account is None:
            raise NotFound("User not found")
        return account

    def ensure_password_allowed(self, plaintext: str) -> None:
        """Raise :class:`PasswordPolicyViolation` listing every rule ``plaintext`` fails."""
        validation = self._password_policy.validate(plaintext)
        if not validation.ok:
            raise PasswordPolicyViolation(
                "; ".join(validation.messages),
                details={"rules": [rule.value for rule in validation.failures]},
            )

    def _hash_validated(self, plaintext: str) -> str:
        self.ensure_password_allowed(plaintext)
        return self._hasher.hash(PasswordPolicy.normalize(plaintext))

    def _stamp(self) -> datetime:
        # Token issue times carry millisecond precision; revocation stamps match it.
        now = self._clock()
        return now.replace(microsecond=now.microsecond // 1000 * 1000)

    def _heal(self, account: Account | None) -> Account | None:
        if account is None:
            return None
        healed = self._lockout_policy.evaluate(account.lockout_state, self._clock())
        if healed != account.lockout_state:
            account.apply_lockout(healed)
        return account
