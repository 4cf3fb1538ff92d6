"""Request-scoped dependencies: authentication, role authorization and tenant scoping."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from fastapi import Depends, Request

from ..config import Settings
from ..domain.account import Role
from ..domain.credentials import CredentialStore
from ..domain.identity import Identity
from ..domain.service import AccountService
from ..domain.tenancy import TenantScoped, load_tenant_resource
from ..errors import Forbidden, RateLimited, TokenVerificationError, Unauthenticated
from ..security.extractor import extract_token
from ..security.tokens import TokenService

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=TenantScoped)


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def client_address(request: Request, trust_forwarded_for: bool = False) -> str:
    """Peer address of the request; ``X-Forwarded-For`` only counts behind a trusted proxy."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def throttle(scope: str) -> Callable[[Request], None]:
    """Per-client-address sliding window guard for public credential endpoints."""

    def dependency(request: Request) -> None:
        limiter = request.app.state.rate_limiter
        settings: Settings = request.app.state.settings
        address = client_address(request, settings.trust_forwarded_for)
        decision = limiter.hit(f"{scope}:{address}")
        if not decision.allowed:
            raise RateLimited(retry_after_seconds=decision.retry_after_seconds)

    return dependency


def authenticate(
    request: Request,
    settings: Settings = Depends(get_settings_from_app),
    tokens: TokenService = Depends(get_token_service),
    credentials: CredentialStore = Depends(get_credential_store),
) -> Identity:
    """Resolve the caller's identity or reject the request.

    Every unauthenticated outcome (missing token, bad signature, expiry,
    deleted account, token older than the last password change) carries the
    same message.
    """
    candidate = extract_token(
        request,
        cookie_name=settings.auth_cookie_name,
        allow_query=settings.allow_query_token,
    )
    if candidate is None:
        raise Unauthenticated()

    try:
        verified = tokens.verify(candidate.value)
    except TokenVerificationError:
        logger.info("rejected invalid session token from %s", candidate.source.value)
        raise

    account = credentials.get_account(verified.account_id)
    if account is None:
        raise Unauthenticated()
    if not account.accepts_token_issued_at(verified.issued_at):
        raise Unauthenticated()
    if account.disabled:
        raise Forbidden("Account is disabled")

    identity = Identity.from_account(account)
    request.state.identity = identity
    return identity


def optional_identity(
    request: Request,
    settings: Settings = Depends(get_settings_from_app),
    tokens: TokenService = Depends(get_token_service),
    credentials: CredentialStore = Depends(get_credential_store),
) -> Identity | None:
    """Like :func:`authenticate`, but an anonymous or rejected caller yields ``None``."""
    try:
        return authenticate(request, settings, tokens, credentials)
    except (Unauthenticated, Forbidden):
        return None


def authorize(*allowed_roles: Role) -> Callable[..., Identity]:
    """Dependency factory admitting only callers whose current role is in ``allowed_roles``."""
    allowed = frozenset(allowed_roles)

    def dependency(
        identity: Identity = Depends(authenticate),
        credentials: CredentialStore = Depends(get_credential_store),
    ) -> Identity:
        if identity is None:
            raise Unauthenticated()
        # The role is re-read so a downgrade applies to tokens already issued.
        account = credentials.get_account(identity.account_id)
        if account is None:
            raise Unauthenticated()
        if account.role not in allowed:
            raise Forbidden(f"User role {account.role.value} is not authorized to access this route")
        return Identity.from_account(account)

    return dependency


def tenant_scoped(
    loader: Callable[[Request, str], R | None],
    *,
    resource_name: str,
    path_param: str,
) -> Callable[..., R]:
    """Dependency factory loading ``path_param`` through ``loader`` behind the tenant boundary check."""

    def dependency(
        request: Request,
        identity: Identity = Depends(authenticate),
        settings: Settings = Depends(get_settings_from_app),
    ) -> R:
        resource_id = request.path_params[path_param]
        return load_tenant_resource(
            lambda key: loader(request, key),
            resource_id,
            identity,
            mask_existence=settings.mask_foreign_resources,
            resource_name=resource_name,
        )

    return dependency
