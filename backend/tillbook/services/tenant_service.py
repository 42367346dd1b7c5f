"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Centralize tenant scoping so that no service builds its own
tenant filter. Every tenant-scoped read or write goes through
scoped_query() / get_scoped_or_404() with the tenant id taken from the
resolved Identity, never from client input.

SECURITY INVARIANTS:
1. Every tenant-scoped query carries `tenant_id = identity.tenant_id`
2. A row of another tenant and a missing row are indistinguishable (NotFoundError)
3. Superadmin identities have no tenant and cannot use the scoped path;
   platform work goes through platform_service instead
4. Client-supplied tenant_id values are never read

USAGE:
    from tillbook.services.tenant_service import scoped_query, get_scoped_or_404

    products = scoped_query(Product, g.identity).filter_by(is_active=True).all()
    product = get_scoped_or_404(Product, product_id, g.identity)
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Tenant
from ..permissions import Identity

logger = logging.getLogger(__name__)


class TenantAccessError(Exception):
    """Raised when an identity has no usable tenant context."""
    pass


class NotFoundError(LookupError):
    """Entity missing or owned by another tenant (HTTP 404)."""

    def __init__(self, entity: str = "Resource", entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


def require_tenant_id(identity: Identity) -> int:
    """
    Tenant id of the caller.

    SECURITY: Raises TenantAccessError for identities without a tenant
    (the superadmin). This keeps platform identities off tenant paths.
    """
    if identity is None or identity.tenant_id is None:
        raise TenantAccessError("Tenant context not established")
    return identity.tenant_id


def scoped_query(model, identity: Identity):
    """
    Base query for a tenant-owned model, filtered to the caller's tenant.

    Args:
        model: SQLAlchemy model class with a tenant_id column
        identity: The resolved request identity

    Returns:
        SQLAlchemy query filtered to identity.tenant_id
    """
    tenant_id = require_tenant_id(identity)
    return db.session.query(model).filter(model.tenant_id == tenant_id)


def get_scoped_or_404(model, entity_id: int, identity: Identity, *, label: str | None = None, for_update: bool = False):
    """
    Fetch one tenant-owned row by id.

    SECURITY: the lookup always includes tenant_id, so a row that exists in
    another tenant is reported exactly like a missing row.
    """
    query = scoped_query(model, identity).filter(model.id == entity_id)
    if for_update:
        query = query.with_for_update()
    row = query.first()
    if row is None:
        name = label or model.__name__
        logger.debug("Scoped lookup miss: %s id=%s tenant=%s", name, entity_id, identity.tenant_id)
        raise NotFoundError(name, entity_id)
    return row


def get_tenant(identity: Identity) -> Tenant:
    tenant = db.session.get(Tenant, require_tenant_id(identity))
    if tenant is None:
        raise NotFoundError("Tenant", identity.tenant_id)
    return tenant


def validate_tenant_active(tenant_id: int) -> Tenant:
    """
    Validate that a tenant exists and may be served (status active or trial).

    Raises:
        TenantAccessError if the tenant doesn't exist or is suspended/expired
    """
    tenant = db.session.get(Tenant, tenant_id)

    if not tenant:
        raise TenantAccessError("Tenant not found")

    if not tenant.is_serviceable:
        raise TenantAccessError(f"Tenant is {tenant.status}")

    return tenant
