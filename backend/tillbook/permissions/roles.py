# Overview: Closed set of user roles and the named role requirements used by routes.

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """
    Coarse permission tiers.

    Roles are compared by exact membership. No role implies another: a check
    that should accept admins as well as managers must list both.
    """
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    def __str__(self) -> str:
        return self.value


# -- Named requirements --
#
# Tenant-scoped operations never list SUPERADMIN: a superadmin has no tenant
# and reaches tenant data only through the platform service.

TENANT_ROLES = frozenset({Role.STAFF, Role.MANAGER, Role.ADMIN})
MANAGER_ROLES = frozenset({Role.MANAGER, Role.ADMIN})
ADMIN_ROLES = frozenset({Role.ADMIN})
PLATFORM_ROLES = frozenset({Role.SUPERADMIN})

# Roles an admin may assign when creating tenant users.
ASSIGNABLE_TENANT_ROLES = frozenset({Role.STAFF, Role.MANAGER, Role.ADMIN})

ROLE_DESCRIPTIONS = {
    Role.STAFF: "Point-of-sale and day-to-day invoicing",
    Role.MANAGER: "Inventory, customers, and invoice lifecycle",
    Role.ADMIN: "Tenant administration: users, settings, connectors, audit",
    Role.SUPERADMIN: "Platform operator: tenants and system logs",
}
