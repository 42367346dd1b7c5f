# Overview: Superadmin platform operations: tenants, system logs, cross-tenant audit and stats.

"""
Platform Service

SECURITY: everything here crosses tenant boundaries on purpose. Routes
reach it only behind PLATFORM_ROLES, and the CLI calls it as system work.
It never reuses the tenant-scoped helpers with a substituted tenant id.

TENANT DELETION: the tenants row is deleted and the database cascades
(ON DELETE CASCADE) to every row referencing it, audit log entries
included. System log entries are not tenant data and survive.

SYSTEM LOGS: append-only; messages longer than 1000 characters are
truncated before insert.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Customer,
    Invoice,
    Product,
    SessionToken,
    SystemLogEntry,
    Tenant,
    User,
)
from ..models.audit import SYSTEM_LOG_LEVELS, SYSTEM_LOG_MESSAGE_MAX
from ..models.tenancy import SUBSCRIPTION_PLANS, TENANT_STATUSES
from ..pagination import paginate
from ..permissions import Role
from ..time_utils import parse_iso_date, utcnow
from ..validation import ConflictError, ValidationError
from . import audit_service, auth_service
from .concurrency import commit_or_conflict
from .tenant_service import NotFoundError

logger = logging.getLogger(__name__)

TENANT_FIELDS = {
    "name", "email", "phone", "address", "pan_number", "vat_number",
    "subscription_plan", "status", "features", "max_users",
}

_PY_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


# -- System logs --

def log_system_event(level: str, message: str, meta: dict | None = None) -> SystemLogEntry:
    """
    Append a system log entry to the current transaction and mirror it to
    the application logger. Flushes, the caller commits.
    """
    if level not in SYSTEM_LOG_LEVELS:
        raise ValidationError(f"level must be one of: {', '.join(SYSTEM_LOG_LEVELS)}")
    message = (message or "").strip()
    if not message:
        raise ValidationError("message is required")
    if meta is not None and not isinstance(meta, dict):
        raise ValidationError("meta must be a JSON object")

    entry = SystemLogEntry(
        level=level,
        message=message[:SYSTEM_LOG_MESSAGE_MAX],
        meta=meta,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    logger.log(_PY_LEVELS[level], "[system] %s", entry.message)
    return entry


def create_system_log(payload: dict) -> SystemLogEntry:
    entry = log_system_event(
        payload.get("level", "info"),
        payload.get("message") or "",
        payload.get("meta"),
    )
    db.session.commit()
    return entry


def list_system_logs(
    *,
    level: str | None = None,
    search: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(SystemLogEntry)
    if level:
        query = query.filter(SystemLogEntry.level == level)
    if search:
        query = query.filter(SystemLogEntry.message.ilike(f"%{search.strip()}%"))
    if start_date:
        start = datetime.combine(parse_iso_date(start_date), datetime.min.time())
        query = query.filter(SystemLogEntry.created_at >= start)
    if end_date:
        end_next = datetime.combine(parse_iso_date(end_date), datetime.min.time()) + timedelta(days=1)
        query = query.filter(SystemLogEntry.created_at < end_next)
    query = query.order_by(SystemLogEntry.created_at.desc(), SystemLogEntry.id.desc())
    return paginate(query, page, per_page)


# -- Tenants --

def _clean_tenant(payload: dict, *, partial: bool) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    patch = {k: v for k, v in payload.items() if k in TENANT_FIELDS}

    if not partial:
        for key in ("name", "email"):
            if not (patch.get(key) or "").strip():
                raise ValidationError(f"{key} is required")

    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise ValidationError("name is required")
        patch["name"] = name[:255]
    if "email" in patch:
        patch["email"] = auth_service.normalize_email(patch["email"])
    if "subscription_plan" in patch and patch["subscription_plan"] not in SUBSCRIPTION_PLANS:
        raise ValidationError(f"subscription_plan must be one of: {', '.join(SUBSCRIPTION_PLANS)}")
    if "status" in patch and patch["status"] not in TENANT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TENANT_STATUSES)}")
    if "features" in patch:
        features = patch["features"]
        if not isinstance(features, list) or not all(isinstance(f, str) for f in features):
            raise ValidationError("features must be a list of strings")
        patch["features"] = sorted({f.strip() for f in features if f.strip()})
    if "max_users" in patch:
        value = patch["max_users"]
        if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= 10_000:
            raise ValidationError("max_users must be an integer between 1 and 10000")
    return patch


def _ensure_email_free(email: str, exclude_id: int | None = None) -> None:
    q = db.session.query(Tenant.id).filter(Tenant.email == email)
    if exclude_id is not None:
        q = q.filter(Tenant.id != exclude_id)
    if q.first():
        raise ConflictError("A tenant with this email already exists")


def _tenant_counts(tenant_ids: list[int]) -> dict[int, dict]:
    counts = {tid: {"users": 0, "products": 0, "customers": 0, "invoices": 0} for tid in tenant_ids}
    if not tenant_ids:
        return counts
    for key, model in (("users", User), ("products", Product), ("customers", Customer), ("invoices", Invoice)):
        rows = (
            db.session.query(model.tenant_id, func.count(model.id))
            .filter(model.tenant_id.in_(tenant_ids))
            .group_by(model.tenant_id)
            .all()
        )
        for tenant_id, count in rows:
            counts[tenant_id][key] = count
    return counts


def _serialize_tenants(rows) -> list[dict]:
    counts = _tenant_counts([t.id for t in rows])
    return [{**t.to_dict(), "counts": counts[t.id]} for t in rows]


def list_tenants(
    *,
    search: str | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Tenant)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Tenant.name.ilike(like), Tenant.email.ilike(like)))
    if status and status != "all":
        query = query.filter(Tenant.status == status)
    query = query.order_by(Tenant.created_at.desc(), Tenant.id.desc())
    return paginate(query, page, per_page, serialize_rows=_serialize_tenants)


def get_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant", tenant_id)
    return tenant


def tenant_details(tenant_id: int) -> dict:
    tenant = get_tenant(tenant_id)
    return _serialize_tenants([tenant])[0]


def create_tenant(payload: dict, *, created_by: int | None = None) -> tuple[Tenant, User | None]:
    """
    Create a tenant, optionally with its first admin user
    (payload["admin"] = {email, password, full_name}).
    """
    patch = _clean_tenant(payload, partial=False)
    _ensure_email_free(patch["email"])

    tenant = Tenant(status="active", subscription_plan="basic", features=[], max_users=5)
    for k, v in patch.items():
        setattr(tenant, k, v)
    db.session.add(tenant)
    db.session.flush()

    admin = None
    admin_payload = payload.get("admin")
    if admin_payload:
        if not isinstance(admin_payload, dict):
            raise ValidationError("admin must be an object")
        admin = auth_service.create_user(
            email=admin_payload.get("email") or "",
            password=admin_payload.get("password") or "",
            full_name=admin_payload.get("full_name") or "",
            role=Role.ADMIN,
            tenant_id=tenant.id,
            created_by=created_by,
            commit=False,
        )

    log_system_event("info", f"Tenant created: {tenant.name}", {"tenant_id": tenant.id, "created_by": created_by})
    commit_or_conflict("A tenant with this email already exists")
    return tenant, admin


def update_tenant(tenant_id: int, payload: dict, *, updated_by: int | None = None) -> Tenant:
    tenant = get_tenant(tenant_id)
    patch = _clean_tenant(payload, partial=True)
    status = patch.pop("status", None)
    if "email" in patch and patch["email"] != tenant.email:
        _ensure_email_free(patch["email"], exclude_id=tenant.id)
    for k, v in patch.items():
        setattr(tenant, k, v)
    if status is not None and status != tenant.status:
        _apply_status(tenant, status, updated_by)
    commit_or_conflict("A tenant with this email already exists")
    return tenant


def _apply_status(tenant: Tenant, status: str, updated_by: int | None) -> None:
    previous = tenant.status
    tenant.status = status
    level = "warn" if status in ("suspended", "expired") else "info"
    log_system_event(
        level,
        f"Tenant {tenant.name} status changed: {previous} -> {status}",
        {"tenant_id": tenant.id, "previous": previous, "status": status, "updated_by": updated_by},
    )


def set_tenant_status(tenant_id: int, status: str, *, updated_by: int | None = None) -> Tenant:
    """
    Change a tenant's status. Sessions of a tenant that is no longer
    active/trial stop validating on their next use.
    """
    if status not in TENANT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TENANT_STATUSES)}")
    tenant = get_tenant(tenant_id)
    if status != tenant.status:
        _apply_status(tenant, status, updated_by)
        db.session.commit()
    return tenant


def delete_tenant(tenant_id: int, *, deleted_by: int | None = None) -> dict:
    """Delete a tenant and, through the database cascade, all of its data."""
    tenant = get_tenant(tenant_id)
    counts = _tenant_counts([tenant.id])[tenant.id]
    name = tenant.name

    db.session.delete(tenant)
    db.session.flush()
    # Rows removed by the cascade may still sit in the identity map.
    db.session.expire_all()

    log_system_event(
        "warn",
        f"Tenant deleted: {name}",
        {"tenant_id": tenant_id, "deleted_by": deleted_by, "counts": counts},
    )
    db.session.commit()
    return {"tenant_id": tenant_id, "name": name, "counts": counts}


# -- Cross-tenant views --

def list_audit_logs(*, filters: dict | None = None, page: int | None = None, per_page: int | None = None) -> dict:
    return audit_service.list_all_audit_logs(filters=filters, page=page, per_page=per_page)


def platform_stats() -> dict:
    by_status = dict(
        db.session.query(Tenant.status, func.count(Tenant.id)).group_by(Tenant.status).all()
    )
    now = utcnow()
    active_sessions = db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        SessionToken.expires_at > now,
    ).count()
    return {
        "tenants": {
            "total": sum(by_status.values()),
            "by_status": {status: by_status.get(status, 0) for status in TENANT_STATUSES},
        },
        "users": db.session.query(User).filter(User.role != Role.SUPERADMIN.value).count(),
        "active_sessions": active_sessions,
        "invoices": db.session.query(Invoice).count(),
        "revenue_cents": int(
            db.session.query(func.coalesce(func.sum(Invoice.total_cents), 0))
            .filter(Invoice.status == "paid")
            .scalar() or 0
        ),
    }
