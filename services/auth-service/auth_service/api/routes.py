"""HTTP route definitions for the auth service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from planner_schemas import AccountPublic
from pydantic import BaseModel, EmailStr, Field

from ..config import Settings
from ..domain.account import Account, Role
from ..domain.contracts import RegisterInput
from ..domain.identity import Identity
from ..domain.service import AccountService, AuthResult
from ..errors import NotFound
from ..security.tokens import IssuedToken
from .dependencies import (
    authenticate,
    authorize,
    get_service,
    get_settings_from_app,
    optional_identity,
    tenant_scoped,
    throttle,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


def to_public(account: Account) -> AccountPublic:
    return AccountPublic(
        account_id=account.account_id,
        email=account.email,
        name=account.name,
        role=account.role.value,
        tenant_id=account.tenant_id,
        created_at=account.created_at,
    )


class RegisterRequest(BaseModel):
    """Payload accepted when registering; ``church_name`` founds a new church."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    name: str | None = Field(default=None, max_length=200)
    church_name: str | None = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UpdateDetailsRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=1)


class AssignRoleRequest(BaseModel):
    role: Role


class AssignTenantRequest(BaseModel):
    tenant_id: str | None = None


class AuthResponse(BaseModel):
    """Session issued after a successful credential exchange."""

    success: bool = True
    token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountPublic


class AccountEnvelope(BaseModel):
    success: bool = True
    account: AccountPublic


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def _set_session_cookie(response: Response, settings: Settings, token: IssuedToken) -> None:
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token.token,
        max_age=token.expires_in,
        expires=token.expires_at,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        path="/",
    )


def _session_response(response: Response, settings: Settings, result: AuthResult) -> AuthResponse:
    _set_session_cookie(response, settings, result.token)
    return AuthResponse(
        token=result.token.token,
        expires_in=result.token.expires_in,
        account=to_public(result.account),
    )


def _load_account(request: Request, account_id: str) -> Account | None:
    return request.app.state.credential_store.get_account(account_id)


tenant_account = tenant_scoped(_load_account, resource_name="User", path_param="account_id")


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(throttle("register"))],
)
def register(
    payload: RegisterRequest,
    response: Response,
    service: AccountService = Depends(get_service),
    settings: Settings = Depends(get_settings_from_app),
) -> AuthResponse:
    """Register an account and start a session."""
    result = service.register(
        RegisterInput(
            email=payload.email,
            password=payload.password,
            name=payload.name,
            church_name=payload.church_name,
        )
    )
    return _session_response(response, settings, result)


@router.post("/auth/login", response_model=AuthResponse, dependencies=[Depends(throttle("login"))])
def login(
    payload: LoginRequest,
    response: Response,
    service: AccountService = Depends(get_service),
    settings: Settings = Depends(get_settings_from_app),
) -> AuthResponse:
    result = service.login(payload.email, payload.password)
    return _session_response(response, settings, result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    response: Response,
    identity: Identity | None = Depends(optional_identity),
    service: AccountService = Depends(get_service),
    settings: Settings = Depends(get_settings_from_app),
) -> MessageResponse:
    """Drop the session cookie and revoke every token the caller holds."""
    if identity is not None:
        service.logout(identity.account_id)
    response.delete_cookie(
        key=settings.auth_cookie_name,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
    )
    return MessageResponse(message="Logged out successfully")


@router.get("/auth/me", response_model=AccountEnvelope)
def me(
    identity: Identity = Depends(authenticate),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    account = service.get_account(identity.account_id)
    if account is None:
        raise NotFound("User not found")
    return AccountEnvelope(account=to_public(account))


@router.put("/auth/details", response_model=AccountEnvelope)
def update_details(
    payload: UpdateDetailsRequest,
    identity: Identity = Depends(authenticate),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    updated = service.update_details(identity.account_id, name=payload.name, email=payload.email)
    return AccountEnvelope(account=to_public(updated))


@router.put("/auth/password", response_model=AuthResponse)
def change_password(
    payload: ChangePasswordRequest,
    response: Response,
    identity: Identity = Depends(authenticate),
    service: AccountService = Depends(get_service),
    settings: Settings = Depends(get_settings_from_app),
) -> AuthResponse:
    """Change the caller's password; sessions issued before the change stop working."""
    result = service.change_password(identity.account_id, payload.current_password, payload.new_password)
    return _session_response(response, settings, result)


@router.post(
    "/auth/password/forgot",
    response_model=MessageResponse,
    dependencies=[Depends(throttle("forgot-password"))],
)
def forgot_password(
    payload: ForgotPasswordRequest,
    service: AccountService = Depends(get_service),
) -> MessageResponse:
    service.request_password_reset(payload.email)
    return MessageResponse(message="If an account exists for that email, a reset link has been sent")


@router.put("/auth/password/reset/{reset_token}", response_model=AuthResponse)
def reset_password(
    reset_token: str,
    payload: ResetPasswordRequest,
    response: Response,
    service: AccountService = Depends(get_service),
    settings: Settings = Depends(get_settings_from_app),
) -> AuthResponse:
    result = service.reset_password(reset_token, payload.password)
    return _session_response(response, settings, result)


@router.get("/accounts/{account_id}", response_model=AccountEnvelope)
def get_account(account: Account = Depends(tenant_account)) -> AccountEnvelope:
    """Retrieve an account belonging to the caller's church."""
    return AccountEnvelope(account=to_public(account))


@router.put("/accounts/{account_id}/role", response_model=AccountEnvelope)
def assign_role(
    payload: AssignRoleRequest,
    actor: Identity = Depends(authorize(Role.ADMIN, Role.SUPER_ADMIN)),
    account: Account = Depends(tenant_account),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    updated = service.assign_role(actor, account, payload.role)
    logger.info(
        "role changed account=%s role=%s by=%s", updated.account_id, updated.role.value, actor.account_id
    )
    return AccountEnvelope(account=to_public(updated))


@router.put("/accounts/{account_id}/tenant", response_model=AccountEnvelope)
def assign_tenant(
    account_id: str,
    payload: AssignTenantRequest,
    actor: Identity = Depends(authorize(Role.SUPER_ADMIN)),
    service: AccountService = Depends(get_service),
) -> AccountEnvelope:
    updated = service.assign_tenant(actor, account_id, payload.tenant_id)
    return AccountEnvelope(account=to_public(updated))
