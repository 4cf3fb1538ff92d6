"""Tenant boundary check applied by every handler that loads a tenant-scoped resource."""

from __future__ import annotations

import logging
from typing import Callable, Protocol, TypeVar

from ..errors import Forbidden, NotFound
from .identity import Identity

logger = logging.getLogger(__name__)


class TenantScoped(Protocol):
    tenant_id: str | None


R = TypeVar("R", bound=TenantScoped)


def assert_same_tenant(
    resource_tenant_id: str | None,
    identity: Identity,
    *,
    mask_existence: bool = False,
    resource_name: str = "Resource",
) -> None:
    """Raise unless the caller may act on a resource owned by ``resource_tenant_id``.

    Super admins bypass tenant scoping. A caller that is not attached to a
    tenant never matches, and neither does a resource without an owner. With
    ``mask_existence`` the mismatch is reported as :class:`NotFound` so a
    foreign resource is indistinguishable from a missing one.
    """
    if identity.bypasses_tenant_scope:
        return
    if (
        identity.tenant_id is not None
        and resource_tenant_id is not None
        and resource_tenant_id == identity.tenant_id
    ):
        return

    logger.warning(
        "tenant boundary violation account=%s caller_tenant=%s resource_tenant=%s",
        identity.account_id,
        identity.tenant_id,
        resource_tenant_id,
    )
    if mask_existence:
        raise NotFound(f"{resource_name} not found")
    raise Forbidden(f"Not authorized to access this {resource_name.lower()}")


def load_tenant_resource(
    loader: Callable[[str], R | None],
    resource_id: str,
    identity: Identity,
    *,
    mask_existence: bool = False,
    resource_name: str = "Resource",
) -> R:
    """Load a resource, report a missing one as ``NotFound``, then enforce the tenant boundary."""
    resource = loader(resource_id)
    if resource is None:
        raise NotFound(f"{resource_name} not found")
    assert_same_tenant(
        resource.tenant_id,
        identity,
        mask_existence=mask_existence,
        resource_name=resource_name,
    )
    return resource
