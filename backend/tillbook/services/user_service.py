# Overview: Tenant user administration: list, create, update, deactivate, delete, profile.

"""
User Administration

MULTI-TENANT: admins manage the users of their own tenant only. Users of
another tenant and the platform superadmin are invisible here (NotFound).

SECURITY:
- Deactivating a user, or changing their role, revokes all their sessions.
- An admin cannot deactivate, demote or delete their own account.
- The tenant's max_users quota counts active users; reactivating a user
  is subject to it like creating one.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Tenant, User
from ..pagination import paginate
from ..permissions import ASSIGNABLE_TENANT_ROLES, Identity, Role, UnknownRoleError, parse_role
from ..validation import ConflictError, ValidationError
from . import auth_service, notification_service, session_service
from .concurrency import commit_or_conflict
from .tenant_service import get_scoped_or_404, require_tenant_id, scoped_query

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {"full_name", "email"}
ADMIN_FIELDS = {"full_name", "email", "role", "is_active"}


def list_users(
    identity: Identity,
    *,
    search: str | None = None,
    role: str | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Users of the caller's tenant.

    status: "active" | "inactive" | None (all).
    """
    query = scoped_query(User, identity)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(User.full_name.ilike(like), User.email.ilike(like)))
    if role and role != "all":
        query = query.filter(User.role == role)
    if status == "active":
        query = query.filter(User.is_active.is_(True))
    elif status == "inactive":
        query = query.filter(User.is_active.is_(False))
    query = query.order_by(User.created_at.desc(), User.id.desc())
    return paginate(query, page, per_page)


def get_user(identity: Identity, user_id: int) -> User:
    return get_scoped_or_404(User, user_id, identity)


def create_tenant_user(identity: Identity, payload: dict) -> User:
    """
    Create a user in the caller's tenant and tell the tenant about it.
    A tenant_id in the payload is ignored.
    """
    tenant_id = require_tenant_id(identity)
    user = auth_service.create_user(
        email=payload.get("email") or "",
        password=payload.get("password") or "",
        full_name=payload.get("full_name") or "",
        role=payload.get("role") or Role.STAFF.value,
        tenant_id=tenant_id,
        created_by=identity.user_id,
        commit=False,
    )
    notification_service.notify_from_template(
        "user_created",
        tenant_id=tenant_id,
        created_by=identity.user_id,
        user_name=user.full_name,
        user_role=user.role,
        new_user_id=user.id,
    )
    commit_or_conflict("Email already registered")
    return user


def _apply_email(user: User, value) -> None:
    email = auth_service.normalize_email(value)
    if email == user.email:
        return
    taken = db.session.query(User.id).filter(User.email == email, User.id != user.id).first()
    if taken:
        raise ConflictError("Email already registered")
    user.email = email


def _apply_role(identity: Identity, user: User, value) -> bool:
    try:
        role = parse_role(value)
    except UnknownRoleError as exc:
        raise ValidationError(str(exc)) from None
    if role not in ASSIGNABLE_TENANT_ROLES:
        raise ValidationError(f"Role {role.value} cannot be assigned")
    if role.value == user.role:
        return False
    if user.id == identity.user_id:
        raise ConflictError("You cannot change your own role")
    user.role = role.value
    return True


def _apply_active(identity: Identity, user: User, value) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("is_active must be a boolean")
    if value == user.is_active:
        return False
    if not value and user.id == identity.user_id:
        raise ConflictError("You cannot deactivate your own account")
    if value:
        tenant = db.session.get(Tenant, user.tenant_id)
        if auth_service.count_active_users(user.tenant_id) >= tenant.max_users:
            raise ConflictError(
                f"User limit reached for this tenant ({tenant.max_users} active users)"
            )
    user.is_active = value
    return True


def update_user(identity: Identity, user_id: int, payload: dict) -> User:
    """Admin edit of another user's name, email, role or active flag."""
    user = get_user(identity, user_id)
    unknown = sorted(set(payload) - ADMIN_FIELDS - {"tenant_id", "id"})
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    revoke = False
    if "full_name" in payload:
        full_name = (payload["full_name"] or "").strip()
        if not full_name:
            raise ValidationError("full_name is required")
        user.full_name = full_name
    if "email" in payload:
        _apply_email(user, payload["email"])
    if "role" in payload:
        revoke |= _apply_role(identity, user, payload["role"])
    if "is_active" in payload:
        changed = _apply_active(identity, user, payload["is_active"])
        revoke |= changed and not user.is_active

    user.updated_by = identity.user_id
    if revoke:
        session_service.revoke_all_user_sessions(user.id, "Account changed by administrator", commit=False)
    commit_or_conflict("Email already registered")
    logger.info("User %s updated by %s", user.id, identity.user_id)
    return user


def deactivate_user(identity: Identity, user_id: int) -> User:
    return update_user(identity, user_id, {"is_active": False})


def delete_user(identity: Identity, user_id: int) -> None:
    """
    Hard delete. Audit entries keep their rows with user_id set to NULL;
    records the user created keep theirs with created_by set to NULL.
    """
    user = get_user(identity, user_id)
    if user.id == identity.user_id:
        raise ConflictError("You cannot delete your own account")
    db.session.delete(user)
    commit_or_conflict("User is still referenced and cannot be deleted")
    logger.info("User %s deleted by %s", user_id, identity.user_id)


def update_profile(user: User, payload: dict) -> User:
    """Self-service edit: name and email only."""
    unknown = sorted(set(payload) - PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")
    if "full_name" in payload:
        full_name = (payload["full_name"] or "").strip()
        if not full_name:
            raise ValidationError("full_name is required")
        user.full_name = full_name
    if "email" in payload:
        _apply_email(user, payload["email"])
    user.updated_by = user.id
    commit_or_conflict("Email already registered")
    return user
