# Overview: Authorization gate. Pure allow/deny decision on an identity and a role requirement.

"""
Authorization Gate

authorize(identity, required) answers one question: may this identity
attempt an operation that needs one of `required` roles? It never touches
the database and never grants tenant access; tenant scoping still applies
to whatever the caller does next.

USAGE:
    decision = authorize(g.identity, MANAGER_ROLES)
    if not decision.allowed:
        ...

    require(g.identity, ADMIN_ROLES)   # raises on Deny
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from ..permissions import Identity, Role, RoleRequirement, normalize_requirement


class DenialReason(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"


@dataclass(frozen=True)
class Allow:
    allowed = True


@dataclass(frozen=True)
class Deny:
    """
    Structured denial.

    required_roles and actual_role are filled for INSUFFICIENT_ROLE so the
    caller can report exactly what was missing.
    """
    reason: DenialReason
    required_roles: tuple[str, ...] = ()
    actual_role: str | None = None

    allowed = False

    def to_dict(self) -> dict:
        data = {"reason": self.reason.value}
        if self.reason is DenialReason.INSUFFICIENT_ROLE:
            data["required_roles"] = list(self.required_roles)
            data["actual_role"] = self.actual_role
        return data


Decision = Union[Allow, Deny]

ALLOW = Allow()


class UnauthenticatedError(Exception):
    """No resolved identity for the request (HTTP 401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)
        self.denial = Deny(DenialReason.UNAUTHENTICATED)


class InsufficientRoleError(Exception):
    """Identity resolved but its role is not accepted (HTTP 403)."""

    def __init__(self, denial: Deny):
        super().__init__(
            f"Requires one of: {', '.join(denial.required_roles)}; "
            f"current role: {denial.actual_role}"
        )
        self.denial = denial

    @property
    def required_roles(self) -> tuple[str, ...]:
        return self.denial.required_roles

    @property
    def actual_role(self) -> str | None:
        return self.denial.actual_role


def _sorted_role_values(roles: frozenset[Role]) -> tuple[str, ...]:
    order = list(Role)
    return tuple(r.value for r in sorted(roles, key=order.index))


def authorize(identity: Identity | None, required: RoleRequirement | None = None) -> Decision:
    """
    Decide whether `identity` may proceed.

    - No identity -> Deny(UNAUTHENTICATED)
    - `required` given and identity.role not in it -> Deny(INSUFFICIENT_ROLE)
    - otherwise Allow

    Superadmin gets no bypass: it passes only where `required` lists it.
    """
    if identity is None:
        return Deny(DenialReason.UNAUTHENTICATED)

    if required is None:
        return ALLOW

    accepted = normalize_requirement(required)
    if identity.role in accepted:
        return ALLOW

    return Deny(
        DenialReason.INSUFFICIENT_ROLE,
        required_roles=_sorted_role_values(accepted),
        actual_role=identity.role.value,
    )


def require(identity: Identity | None, required: RoleRequirement | None = None) -> Identity:
    """authorize() that raises instead of returning Deny. Returns the identity."""
    decision = authorize(identity, required)
    if decision.allowed:
        return identity
    if decision.reason is DenialReason.UNAUTHENTICATED:
        raise UnauthenticatedError()
    raise InsufficientRoleError(decision)
