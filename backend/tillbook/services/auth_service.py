# Overview: Passwords, login, and user account creation.

"""
Authentication Service with Multi-Tenant Support

WHY: Every action must be attributable. Uses bcrypt for password hashing
and validates password strength.

MULTI-TENANT: Every user except the platform superadmin belongs to exactly
one tenant. Email is unique system-wide since login is by email alone.
Tenant user quotas (Tenant.max_users) are enforced at creation.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char
- Session tokens managed separately (see session_service.py)
- Login is refused for users of suspended/expired tenants
"""

import logging
import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Tenant, User
from ..permissions import ASSIGNABLE_TENANT_ROLES, Role, UnknownRoleError, parse_role
from ..validation import ConflictError, ValidationError
from .concurrency import commit_or_conflict
from .tenant_service import NotFoundError
from tillbook.time_utils import utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    return email


def _check_role_for_tenant(role: Role, tenant_id: int | None) -> None:
    if role is Role.SUPERADMIN:
        if tenant_id is not None:
            raise ValidationError("Superadmin users cannot belong to a tenant")
    elif tenant_id is None:
        raise ValidationError(f"{role.value} users must belong to a tenant")


def count_active_users(tenant_id: int) -> int:
    return db.session.query(User).filter(
        User.tenant_id == tenant_id,
        User.is_active.is_(True),
    ).count()


def create_user(
    *,
    email: str,
    password: str,
    full_name: str,
    role: Role | str,
    tenant_id: int | None,
    created_by: int | None = None,
    commit: bool = True,
) -> User:
    """
    Create new user with bcrypt password hashing.

    MULTI-TENANT: non-superadmin users need an existing tenant; the
    superadmin must have none. Tenant-scoped callers may only assign
    staff/manager/admin.

    Raises:
        ValidationError: bad email, role, password or tenant/role combination
        NotFoundError: tenant does not exist
        ConflictError: email already registered, or tenant user quota reached
    """
    try:
        role = parse_role(role)
    except UnknownRoleError as exc:
        raise ValidationError(str(exc)) from None

    _check_role_for_tenant(role, tenant_id)

    if role is not Role.SUPERADMIN and role not in ASSIGNABLE_TENANT_ROLES:
        raise ValidationError(f"Role {role.value} cannot be assigned")

    email = normalize_email(email)
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValidationError("full_name is required")

    if tenant_id is not None:
        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant", tenant_id)
        if count_active_users(tenant_id) >= tenant.max_users:
            raise ConflictError(
                f"User limit reached for this tenant ({tenant.max_users} active users)"
            )

    if db.session.query(User.id).filter(User.email == email).first():
        raise ConflictError("Email already registered")

    user = User(
        tenant_id=tenant_id,
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        role=role.value,
        is_active=True,
        created_by=created_by,
        updated_by=created_by,
    )

    db.session.add(user)
    if commit:
        commit_or_conflict("Email already registered")
    else:
        db.session.flush()
    logger.info("Created user %s (role=%s, tenant=%s)", user.id, user.role, tenant_id)
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user by email and password.

    Returns User if credentials are valid, the account is active and its
    tenant (if any) is active or on trial. Updates last_login_at.
    """
    email = (email or "").strip().lower()
    if not email or not password:
        return None

    user = db.session.query(User).filter(
        User.email == email,
        User.is_active.is_(True),
    ).first()

    if not user:
        # Spend comparable time on unknown emails.
        bcrypt.checkpw(b"x", bcrypt.hashpw(b"y", bcrypt.gensalt(rounds=4)))
        return None

    if not verify_password(password, user.password_hash):
        return None

    if user.tenant_id is not None:
        tenant = db.session.get(Tenant, user.tenant_id)
        if not tenant or not tenant.is_serviceable:
            return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    """Verify the current password, store the new hash. Callers revoke sessions."""
    if not verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect")
    if current_password == new_password:
        raise ValidationError("New password must differ from the current password")
    user.password_hash = hash_password(new_password)
    user.updated_by = user.id
    db.session.commit()
