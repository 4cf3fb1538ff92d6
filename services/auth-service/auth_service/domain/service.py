"""Account service orchestrating credentials, lockout, token issuance, and auditing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from ..errors import DuplicateEmail, Forbidden, NotFound, RateLimited, Unauthenticated, ValidationError
from ..security.tokens import IssuedToken, TokenService, generate_reset_token, hash_reset_token
from .account import Account, Role, Tenant
from .contracts import PasswordResetRequest, RegisterInput, ResetNotifier
from .credentials import CredentialStore
from .identity import Identity
from .lockout import format_remaining

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_RESET_TOKEN = "Invalid or expired reset token"


class AccountRepositoryLike(Protocol):
    def create_tenant(self, name: str) -> Tenant: ...

    def get_tenant(self, tenant_id: str) -> Tenant | None: ...

    def delete_tenant(self, tenant_id: str) -> None: ...

    def create_reset_token(self, *, account_id: str, token_hash: str, expires_at: datetime) -> None: ...

    def consume_reset_token(self, token_hash: str, now: datetime) -> str | None: ...

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


@dataclass(slots=True)
class AuthResult:
    """An authenticated account together with its freshly issued session token."""

    account: Account
    token: IssuedToken


class LoggingResetNotifier:
    """Default notifier: records that a reset was requested. Delivery is left to the mail service."""

    def send_reset(self, request: PasswordResetRequest) -> None:
        logger.info(
            "password reset requested account=%s expires_at=%s",
            request.account_id,
            request.expires_at.isoformat(),
        )


class AccountService:
    """Registration, login, and password workflows."""

    def __init__(
        self,
        repository: AccountRepositoryLike,
        credentials: CredentialStore,
        tokens: TokenService,
        *,
        reset_token_ttl: timedelta = timedelta(minutes=10),
        notifier: ResetNotifier | None = None,
    ) -> None:
        self._repository = repository
        self._credentials = credentials
        self._tokens = tokens
        self._reset_token_ttl = reset_token_ttl
        self._notifier = notifier or LoggingResetNotifier()

    def register(self, payload: RegisterInput) -> AuthResult:
        """Create an account; a church name founds a new tenant administered by the registrant."""
        # Validate the password before any tenant row is written.
        self._credentials.ensure_password_allowed(payload.password)
        if self._credentials.find_by_email(payload.email) is not None:
            raise DuplicateEmail()

        tenant: Tenant | None = None
        role = Role.USER
        if payload.church_name and payload.church_name.strip():
            tenant = self._repository.create_tenant(payload.church_name)
            role = Role.ADMIN

        try:
            account = self._credentials.create(
                payload.email,
                payload.password,
                role=role,
                tenant_id=tenant.tenant_id if tenant else None,
                name=payload.name,
            )
        except DuplicateEmail:
            if tenant is not None:
                self._repository.delete_tenant(tenant.tenant_id)
            raise
        self._audit(account, "account.registered", metadata={"tenant_created": tenant is not None})
        logger.info("account registered account=%s tenant=%s", account.account_id, account.tenant_id)
        return AuthResult(account=account, token=self._tokens.issue(account.account_id))

    def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials, applying the lockout state machine.

        Failures are reported with one generic message so callers cannot tell
        an unknown email from a wrong password.
        """
        account = self._credentials.find_by_email(email, include_secret=True)
        if account is None:
            self._credentials.verify_dummy(password)
            logger.warning("login failed: unknown email")
            raise Unauthenticated(INVALID_CREDENTIALS)

        now = self._credentials.now()
        if account.lockout_state.is_locked(now):
            remaining = account.lockout_state.remaining_seconds(now)
            logger.warning("login rejected: account locked account=%s", account.account_id)
            raise self._locked_error(remaining)

        if not self._credentials.verify_secret(account, password):
            outcome = self._credentials.record_failed_attempt(account.account_id)
            self._audit(
                account,
                "login.failed",
                metadata={"failed_attempts": outcome.state.failed_attempts},
            )
            if outcome.newly_locked:
                logger.warning(
                    "account locked after %s failed attempts account=%s",
                    outcome.state.failed_attempts,
                    account.account_id,
                )
                self._audit(
                    account,
                    "account.locked",
                    metadata={"locked_until": outcome.state.locked_until.isoformat()},
                )
            elif outcome.locked:
                raise self._locked_error(outcome.remaining_seconds)
            logger.warning("login failed: wrong password account=%s", account.account_id)
            raise Unauthenticated(INVALID_CREDENTIALS)

        if account.disabled:
            logger.warning("login rejected: account disabled account=%s", account.account_id)
            raise Unauthenticated(INVALID_CREDENTIALS)

        state = self._credentials.record_successful_login(account.account_id)
        if state.is_locked(now):
            logger.warning("login rejected: account locked during verification account=%s", account.account_id)
            raise self._locked_error(state.remaining_seconds(now))
        self._credentials.rehash_if_needed(account, password)
        account.failed_attempts = 0
        account.locked_until = None
        account.secret_hash = None
        self._audit(account, "login.succeeded")
        logger.info("login succeeded account=%s", account.account_id)
        return AuthResult(account=account, token=self._tokens.issue(account.account_id))

    def get_account(self, account_id: str) -> Account | None:
        return self._credentials.get_account(account_id)

    def update_details(self, account_id: str, *, name: str | None = None, email: str | None = None) -> Account:
        """Change the display name and/or login email; the new email must be free."""
        if name is None and email is None:
            raise ValidationError("Provide a name or email to update")
        if email is not None:
            existing = self._credentials.find_by_email(email)
            if existing is not None and existing.account_id != account_id:
                raise DuplicateEmail()
        updated = self._credentials.update_details(account_id, name=name, email=email)
        self._audit(updated, "account.updated", metadata={"email_changed": email is not None})
        logger.info("account details updated account=%s", account_id)
        return updated

    def logout(self, account_id: str) -> None:
        self._credentials.revoke_sessions(account_id)
        account = self._credentials.get_account(account_id)
        if account is not None:
            self._audit(account, "sessions.revoked")
        logger.info("sessions revoked account=%s", account_id)

    def change_password(self, account_id: str, current_password: str, new_password: str) -> AuthResult:
        account = self._credentials.get_account(account_id, include_secret=True)
        if account is None:
            raise Unauthenticated()
        if not self._credentials.verify_secret(account, current_password):
            raise Unauthenticated("Password is incorrect")

        updated = self._credentials.update_secret(account_id, new_password)
        self._audit(updated, "password.changed")
        logger.info("password changed account=%s", account_id)
        return AuthResult(account=updated, token=self._tokens.issue(account_id))

    def request_password_reset(self, email: str) -> None:
        """Start a reset if the account exists; the caller sees the same outcome either way."""
        account = self._credentials.find_by_email(email)
        if account is None or account.disabled:
            logger.info("password reset requested for unknown or disabled email")
            return

        raw_token, token_hash = generate_reset_token()
        expires_at = self._credentials.now() + self._reset_token_ttl
        self._repository.create_reset_token(
            account_id=account.account_id,
            token_hash=token_hash,
            expires_at=expires_at,
        )
        self._audit(account, "password.reset_requested")
        self._notifier.send_reset(
            PasswordResetRequest(
                account_id=account.account_id,
                email=account.email,
                token=raw_token,
                expires_at=expires_at,
            )
        )

    def reset_password(self, raw_token: str, new_password: str) -> AuthResult:
        # Policy first so a weak password does not burn the single-use token.
        self._credentials.ensure_password_allowed(new_password)
        account_id = self._repository.consume_reset_token(
            hash_reset_token(raw_token), self._credentials.now()
        )
        if account_id is None:
            raise ValidationError(INVALID_RESET_TOKEN)

        account = self._credentials.update_secret(account_id, new_password)
        self._audit(account, "password.reset")
        logger.info("password reset completed account=%s", account_id)
        return AuthResult(account=account, token=self._tokens.issue(account_id))

    def assign_role(self, actor: Identity, target: Account, role: Role) -> Account:
        """Change ``target``'s role. Granting or revoking super admin requires a super admin."""
        touches_super_admin = Role.SUPER_ADMIN in (role, target.role)
        if touches_super_admin and actor.role is not Role.SUPER_ADMIN:
            raise Forbidden("Only a super admin can grant or revoke the super admin role")

        updated = self._credentials.assign_role(target.account_id, role)
        self._audit(
            updated,
            "role.changed",
            actor=actor.account_id,
            metadata={"from": target.role.value, "to": role.value},
        )
        return updated

    def assign_tenant(self, actor: Identity, account_id: str, tenant_id: str | None) -> Account:
        if tenant_id is not None and self._repository.get_tenant(tenant_id) is None:
            raise NotFound("Church not found")
        updated = self._credentials.assign_tenant(account_id, tenant_id)
        self._audit(updated, "tenant.assigned", actor=actor.account_id)
        return updated

    def _locked_error(self, remaining_seconds: int) -> RateLimited:
        return RateLimited(
            f"Account is locked. Try again in {format_remaining(remaining_seconds)}",
            retry_after_seconds=remaining_seconds,
        )

    def _audit(
        self,
        account: Account,
        event_type: str,
        *,
        actor: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._repository.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type=event_type,
            actor=actor or account.account_id,
            metadata=metadata,
        )
