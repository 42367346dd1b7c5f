# Overview: Role parsing and the central role-satisfaction relation.

from __future__ import annotations

from typing import Iterable, Union

from .roles import Role

RoleRequirement = Union[Role, str, Iterable[Union[Role, str]]]


class UnknownRoleError(ValueError):
    """Raised when a string does not name a known role."""


def parse_role(value: Role | str) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role((value or "").strip().lower())
    except ValueError:
        raise UnknownRoleError(f"Unknown role: {value!r}") from None


def normalize_requirement(required: RoleRequirement) -> frozenset[Role]:
    """Turn a single role or a collection of roles into a set of accepted roles."""
    if isinstance(required, (Role, str)):
        return frozenset({parse_role(required)})
    accepted = frozenset(parse_role(r) for r in required)
    if not accepted:
        raise UnknownRoleError("Role requirement must name at least one role")
    return accepted


def role_satisfies(actual: Role | str, required: RoleRequirement) -> bool:
    """True iff `actual` is a member of the accepted set. No hierarchy."""
    return parse_role(actual) in normalize_requirement(required)
