# Overview: The resolved caller of a request.

from __future__ import annotations

from dataclasses import dataclass

from .helpers import RoleRequirement, parse_role, role_satisfies
from .roles import Role


@dataclass(frozen=True)
class Identity:
    """
    Who is acting: user, tenant membership and role.

    Built once per request from the session token and passed explicitly to
    services. tenant_id is None only for the platform superadmin.
    """
    user_id: int
    tenant_id: int | None
    role: Role

    def __post_init__(self) -> None:
        role = parse_role(self.role)
        object.__setattr__(self, "role", role)
        if role is Role.SUPERADMIN and self.tenant_id is not None:
            raise ValueError("Superadmin identities carry no tenant")
        if role is not Role.SUPERADMIN and self.tenant_id is None:
            raise ValueError(f"{role.value} identities require a tenant")

    @classmethod
    def for_user(cls, user) -> "Identity":
        return cls(user_id=user.id, tenant_id=user.tenant_id, role=user.role)

    @property
    def is_superadmin(self) -> bool:
        return self.role is Role.SUPERADMIN

    def has_role(self, required: RoleRequirement) -> bool:
        """True iff this identity's role is in `required` (one role or a collection)."""
        return role_satisfies(self.role, required)
