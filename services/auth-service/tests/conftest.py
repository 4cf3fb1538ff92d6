from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from auth_service.api import routes
from auth_service.api.errors import register_exception_handlers
from auth_service.config import Settings
from auth_service.domain.account import Account, Role, Tenant
from auth_service.domain.contracts import CreateAccountInput, PasswordResetRequest
from auth_service.domain.credentials import CredentialStore
from auth_service.domain.lockout import LockoutPolicy
from auth_service.domain.password_policy import PasswordPolicy
from auth_service.errors import DuplicateEmail, NotFound
from auth_service.main import wire_services
from auth_service.security.passwords import SecretHasher
from auth_service.security.rate_limiter import SlidingWindowRateLimiter

STRONG_PASSWORD = "Str0ng!Passw0rd"


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed behaviors."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._tenants: dict[str, Tenant] = {}
        self._reset_tokens: dict[str, FakeResetToken] = {}
        self._lock = threading.Lock()
        self.audit_log: list[FakeAuditLogRecord] = []

    def _project(self, account: Account, include_secret: bool) -> Account:
        copy = replace(account)
        if not include_secret:
            copy.secret_hash = None
        return copy

    def find_by_email(self, email: str, *, include_secret: bool = False):
        wanted = email.strip().lower()
        for account in self._accounts.values():
            if account.email == wanted:
                return self._project(account, include_secret)
        return None

    def get_account(self, account_id: str, *, include_secret: bool = False):
        account = self._accounts.get(account_id)
        return self._project(account, include_secret) if account else None

    def create_account(self, payload: CreateAccountInput) -> Account:
        with self._lock:
            email = payload.email.strip().lower()
            if any(account.email == email for account in self._accounts.values()):
                raise DuplicateEmail()
            account = Account(
                account_id=str(uuid.uuid4()),
                email=email,
                role=payload.role,
                created_at=datetime.now(timezone.utc),
                name=payload.name,
                tenant_id=payload.tenant_id,
                secret_hash=payload.secret_hash,
            )
            self._accounts[account.account_id] = account
        return self._project(account, include_secret=False)

    def update_secret(self, account_id: str, secret_hash: str, changed_at: datetime) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise NotFound("User not found")
            account.secret_hash = secret_hash
            account.secret_changed_at = changed_at
            account.failed_attempts = 0
            account.locked_until = None
        return self._project(account, include_secret=False)

    def update_details(self, account_id: str, *, name: str | None, email: str | None):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            if email is not None:
                wanted = email.strip().lower()
                if any(other.email == wanted and other.account_id != account_id for other in self._accounts.values()):
                    raise DuplicateEmail()
                account.email = wanted
            if name is not None:
                account.name = name
        return self._project(account, include_secret=False)

    def revoke_sessions(self, account_id: str, revoked_at: datetime) -> None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is not None:
                account.sessions_revoked_at = revoked_at

    def replace_secret_hash(self, account_id: str, secret_hash: str) -> None:
        with self._lock:
            self._accounts[account_id].secret_hash = secret_hash

    def update_lockout(self, account_id: str, transition):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            before = account.lockout_state
            after = transition(before)
            account.apply_lockout(after)
        return before, after

    def update_role(self, account_id: str, role: Role):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            account.role = role
        return self._project(account, include_secret=False)

    def update_tenant(self, account_id: str, tenant_id: str | None):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            account.tenant_id = tenant_id
        return self._project(account, include_secret=False)

    def create_tenant(self, name: str) -> Tenant:
        tenant = Tenant(tenant_id=str(uuid.uuid4()), name=name.strip(), created_at=datetime.now(timezone.utc))
        self._tenants[tenant.tenant_id] = tenant
        return tenant

    def get_tenant(self, tenant_id: str):
        return self._tenants.get(tenant_id)

    def delete_tenant(self, tenant_id: str) -> None:
        self._tenants.pop(tenant_id, None)

    def create_reset_token(self, *, account_id: str, token_hash: str, expires_at: datetime) -> None:
        self._reset_tokens[token_hash] = FakeResetToken(account_id=account_id, expires_at=expires_at)

    def consume_reset_token(self, token_hash: str, now: datetime):
        with self._lock:
            record = self._reset_tokens.get(token_hash)
            if record is None or record.used_at is not None or record.expires_at <= now:
                return None
            record.used_at = now
        return record.account_id

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        self.audit_log.append(
            FakeAuditLogRecord(
                account_id=account_id,
                tenant_id=tenant_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
            )
        )

    # Test-only helpers for reaching into stored state.
    def stored(self, account_id: str) -> Account:
        return self._accounts[account_id]

    def delete(self, account_id: str) -> None:
        self._accounts.pop(account_id)

    def tenant_names(self) -> list[str]:
        return [tenant.name for tenant in self._tenants.values()]

    def event_types(self) -> list[str]:
        return [record.event_type for record in self.audit_log]


@dataclass
class FakeResetToken:
    account_id: str
    expires_at: datetime
    used_at: datetime | None = None


@dataclass
class FakeAuditLogRecord:
    account_id: str | None
    tenant_id: str | None
    event_type: str
    actor: str | None
    metadata: dict


@dataclass
class RecordingNotifier:
    sent: list[PasswordResetRequest] = field(default_factory=list)

    def send_reset(self, request: PasswordResetRequest) -> None:
        self.sent.append(request)


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="test",
        jwt_secret="test-signing-secret",
        argon2_time_cost=1,
        argon2_memory_cost=1024,
        argon2_parallelism=1,
        rate_limit_requests=1000,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def credential_store(settings, repository) -> CredentialStore:
    return CredentialStore(
        repository,
        SecretHasher(settings),
        PasswordPolicy.from_settings(settings),
        LockoutPolicy.from_settings(settings),
    )


class Harness:
    """Test client plus shortcuts for the common register/login steps."""

    def __init__(self, client: TestClient, app: FastAPI, repository: FakeRepository, notifier) -> None:
        self.client = client
        self.app = app
        self.repository = repository
        self.notifier = notifier

    def register(self, email: str, password: str = STRONG_PASSWORD, church_name: str | None = None) -> dict:
        payload = {"email": email, "password": password, "name": email.split("@")[0]}
        if church_name:
            payload["church_name"] = church_name
        response = self.client.post("/v1/auth/register", json=payload)
        assert response.status_code == 201, response.text
        self.client.cookies.clear()
        return response.json()

    def login(self, email: str, password: str = STRONG_PASSWORD):
        response = self.client.post("/v1/auth/login", json={"email": email, "password": password})
        self.client.cookies.clear()
        return response

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def build_app(settings: Settings, repository: FakeRepository, notifier, rate_limiter=None) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(routes.router)
    wire_services(app, settings, repository, notifier=notifier, rate_limiter=rate_limiter)
    return app


@pytest.fixture
def harness(settings, repository):
    """Provide a FastAPI test client with isolated state."""
    notifier = RecordingNotifier()
    app = build_app(
        settings,
        repository,
        notifier,
        rate_limiter=SlidingWindowRateLimiter(max_requests=1000, window_seconds=60),
    )
    with TestClient(app) as client:
        yield Harness(client, app, repository, notifier)
