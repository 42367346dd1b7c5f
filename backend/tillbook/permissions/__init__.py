# Overview: Role model package.
# Re-exports the role enum, named requirements, and satisfaction helpers.

from .roles import (
    Role,
    TENANT_ROLES,
    MANAGER_ROLES,
    ADMIN_ROLES,
    PLATFORM_ROLES,
    ASSIGNABLE_TENANT_ROLES,
    ROLE_DESCRIPTIONS,
)
from .identity import Identity
from .helpers import (
    RoleRequirement,
    UnknownRoleError,
    parse_role,
    normalize_requirement,
    role_satisfies,
)

__all__ = [
    "Identity",
    "Role",
    "TENANT_ROLES",
    "MANAGER_ROLES",
    "ADMIN_ROLES",
    "PLATFORM_ROLES",
    "ASSIGNABLE_TENANT_ROLES",
    "ROLE_DESCRIPTIONS",
    "RoleRequirement",
    "UnknownRoleError",
    "parse_role",
    "normalize_requirement",
    "role_satisfies",
]
