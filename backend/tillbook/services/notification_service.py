# Overview: Notification fan-out: create, template, list, read state, delete.

"""
Notification Service

MULTI-TENANT: every notification belongs to one tenant. user_id=None is a
tenant-wide broadcast visible to every user of that tenant.

READ STATE: unread -> read happens once. mark_as_read() on an already read
notification is a no-op and keeps the first read_at. Broadcasts share a
single read flag across the tenant.

EXPIRY: expired notifications are hidden from default lists and from the
unread count, but are not deleted and stay retrievable by id.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import Notification, User
from ..models.notifications import (
    NOTIFICATION_CATEGORIES,
    NOTIFICATION_PRIORITIES,
    NOTIFICATION_TYPES,
)
from ..pagination import paginate
from ..permissions import MANAGER_ROLES, Identity
from ..validation import ValidationError
from .authorization_service import require
from .tenant_service import NotFoundError, require_tenant_id
from tillbook.time_utils import parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


def _format_amount(cents: int) -> str:
    return f"{cents / 100:,.2f}"


# -- Templates --
#
# Each template returns the keyword arguments for notify() apart from
# tenant_id / user_id / created_by.

def low_stock(product_name: str, current_stock: int, reorder_point: int, product_id: int) -> dict:
    return {
        "type": "warning",
        "category": "inventory",
        "title": "Low Stock Alert",
        "message": f"{product_name} is running low. Current stock: {current_stock}, Reorder point: {reorder_point}",
        "priority": "high",
        "entity_ref": ("product", product_id),
        "action_url": f"/products/{product_id}",
    }


def out_of_stock(product_name: str, product_id: int) -> dict:
    return {
        "type": "error",
        "category": "inventory",
        "title": "Out of Stock",
        "message": f"{product_name} is out of stock",
        "priority": "critical",
        "entity_ref": ("product", product_id),
        "action_url": f"/products/{product_id}",
    }


def invoice_created(invoice_number: str, customer_name: str, invoice_id: int) -> dict:
    return {
        "type": "success",
        "category": "invoice",
        "title": "Invoice Created",
        "message": f"Invoice {invoice_number} created for {customer_name}",
        "priority": "medium",
        "entity_ref": ("invoice", invoice_id),
        "action_url": f"/invoices/{invoice_id}",
    }


def invoice_overdue(invoice_number: str, customer_name: str, days_overdue: int, invoice_id: int) -> dict:
    return {
        "type": "warning",
        "category": "invoice",
        "title": "Invoice Overdue",
        "message": f"Invoice {invoice_number} for {customer_name} is {days_overdue} days overdue",
        "priority": "high",
        "entity_ref": ("invoice", invoice_id),
        "action_url": f"/invoices/{invoice_id}",
    }


def payment_received(invoice_number: str, amount_cents: int, invoice_id: int) -> dict:
    return {
        "type": "success",
        "category": "payment",
        "title": "Payment Received",
        "message": f"Payment of {_format_amount(amount_cents)} received for invoice {invoice_number}",
        "priority": "medium",
        "entity_ref": ("invoice", invoice_id),
        "action_url": f"/invoices/{invoice_id}",
    }


def user_created(user_name: str, user_role: str, new_user_id: int) -> dict:
    return {
        "type": "info",
        "category": "user",
        "title": "New User Created",
        "message": f"New {user_role} user {user_name} has been created",
        "priority": "low",
        "entity_ref": ("user", new_user_id),
        "action_url": f"/users/{new_user_id}",
    }


def backup_completed() -> dict:
    return {
        "type": "success",
        "category": "system",
        "title": "Backup Completed",
        "message": "System backup has been completed successfully",
        "priority": "low",
    }


def system_maintenance(scheduled_at: datetime) -> dict:
    return {
        "type": "info",
        "category": "system",
        "title": "Scheduled Maintenance",
        "message": f"System maintenance scheduled for {scheduled_at.strftime('%Y-%m-%d %H:%M')} UTC",
        "priority": "medium",
        "expires_at": scheduled_at,
    }


TEMPLATES = {
    "low_stock": low_stock,
    "out_of_stock": out_of_stock,
    "invoice_created": invoice_created,
    "invoice_overdue": invoice_overdue,
    "payment_received": payment_received,
    "user_created": user_created,
    "backup_completed": backup_completed,
    "system_maintenance": system_maintenance,
}


# -- Create --

def _check_choice(name: str, value: str, allowed: tuple[str, ...]) -> None:
    if value not in allowed:
        raise ValidationError(f"{name} must be one of: {', '.join(allowed)}")


def notify(
    tenant_id: int,
    user_id: int | None,
    type: str,
    category: str,
    title: str,
    message: str,
    priority: str = "medium",
    entity_ref: tuple[str, int] | None = None,
    expires_at: datetime | None = None,
    action_url: str | None = None,
    created_by: int | None = None,
) -> Notification:
    """
    Add a notification to the current transaction (flushed, not committed).

    user_id=None broadcasts to the whole tenant. entity_ref is an optional
    (entity_type, entity_id) pair naming the entity the notification is about.
    """
    _check_choice("type", type, NOTIFICATION_TYPES)
    _check_choice("category", category, NOTIFICATION_CATEGORIES)
    _check_choice("priority", priority, NOTIFICATION_PRIORITIES)
    if not (title or "").strip():
        raise ValidationError("title is required")
    if not (message or "").strip():
        raise ValidationError("message is required")

    entity_type, entity_id = entity_ref if entity_ref else (None, None)
    now = utcnow()

    notification = Notification(
        tenant_id=tenant_id,
        user_id=user_id,
        type=type,
        category=category,
        title=title.strip()[:255],
        message=message.strip(),
        priority=priority,
        entity_type=entity_type,
        entity_id=entity_id,
        action_url=action_url,
        expires_at=expires_at,
        is_read=False,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.session.add(notification)
    db.session.flush()
    logger.info("Notification created: %s (tenant=%s, user=%s)", notification.title, tenant_id, user_id)
    return notification


def notify_from_template(
    template: str,
    *,
    tenant_id: int,
    user_id: int | None = None,
    created_by: int | None = None,
    **context,
) -> Notification:
    builder = TEMPLATES.get(template)
    if builder is None:
        raise ValidationError(f"Unknown notification template: {template}")
    return notify(tenant_id, user_id, created_by=created_by, **builder(**context))


def create_for_identity(identity: Identity, payload: dict) -> Notification:
    """
    API-facing create. Tenant comes from the identity; a target user_id in
    the payload must belong to the same tenant.
    """
    tenant_id = require_tenant_id(identity)
    target_user_id = payload.get("user_id")
    if target_user_id is not None:
        if not isinstance(target_user_id, int) or isinstance(target_user_id, bool):
            raise ValidationError("user_id must be an integer")
        exists = db.session.query(User.id).filter(
            User.id == target_user_id, User.tenant_id == tenant_id
        ).first()
        if not exists:
            raise NotFoundError("User", target_user_id)

    expires_at = payload.get("expires_at")
    if expires_at:
        try:
            expires_at = parse_iso_datetime(expires_at)
        except (AttributeError, TypeError, ValueError):
            raise ValidationError("expires_at must be an ISO-8601 datetime")

    entity_ref = None
    if payload.get("entity_type") and payload.get("entity_id") is not None:
        entity_ref = (str(payload["entity_type"]), int(payload["entity_id"]))

    notification = notify(
        tenant_id,
        target_user_id,
        type=payload.get("type", "info"),
        category=payload.get("category", "system"),
        title=payload.get("title") or "",
        message=payload.get("message") or "",
        priority=payload.get("priority", "medium"),
        entity_ref=entity_ref,
        expires_at=expires_at,
        action_url=payload.get("action_url"),
        created_by=identity.user_id,
    )
    db.session.commit()
    return notification


# -- Query --

def _visible_to(identity: Identity):
    """Notifications addressed to this user or broadcast to their tenant."""
    tenant_id = require_tenant_id(identity)
    return db.session.query(Notification).filter(
        Notification.tenant_id == tenant_id,
        db.or_(Notification.user_id == identity.user_id, Notification.user_id.is_(None)),
    )


def _not_expired(query, now: datetime):
    return query.filter(db.or_(Notification.expires_at.is_(None), Notification.expires_at >= now))


def unread_count(identity: Identity) -> int:
    query = _not_expired(_visible_to(identity), utcnow())
    return query.filter(Notification.is_read.is_(False)).count()


def list_notifications(
    identity: Identity,
    *,
    is_read: bool | None = None,
    type: str | None = None,
    category: str | None = None,
    priority: str | None = None,
    include_expired: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Newest-first notifications visible to the caller.

    Returns the page plus `unread_count` (unexpired, unread, unfiltered).
    """
    query = _visible_to(identity)
    if not include_expired:
        query = _not_expired(query, utcnow())
    if is_read is not None:
        query = query.filter(Notification.is_read.is_(bool(is_read)))
    if type:
        query = query.filter(Notification.type == type)
    if category:
        query = query.filter(Notification.category == category)
    if priority:
        query = query.filter(Notification.priority == priority)

    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    result = paginate(query, page, per_page)
    result["unread_count"] = unread_count(identity)
    return result


def get_notification(identity: Identity, notification_id: int) -> Notification:
    """Direct lookup. Expired notifications are still returned."""
    notification = _visible_to(identity).filter(Notification.id == notification_id).first()
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    return notification


# -- Read state --

def mark_as_read(identity: Identity, notification_id: int) -> Notification:
    """Idempotent: read_at keeps the time of the first read."""
    notification = get_notification(identity, notification_id)
    if not notification.is_read:
        now = utcnow()
        notification.is_read = True
        notification.read_at = now
        notification.updated_at = now
        db.session.commit()
    return notification


def mark_all_as_read(identity: Identity) -> int:
    """Mark every unread, unexpired notification visible to the caller. Returns count."""
    now = utcnow()
    ids = [
        n.id
        for n in _not_expired(_visible_to(identity), now)
        .filter(Notification.is_read.is_(False))
        .with_entities(Notification.id)
    ]
    if not ids:
        return 0
    db.session.query(Notification).filter(Notification.id.in_(ids)).update(
        {"is_read": True, "read_at": now, "updated_at": now},
        synchronize_session="fetch",
    )
    db.session.commit()
    return len(ids)


def delete_notification(identity: Identity, notification_id: int) -> None:
    """Users delete their own notifications; broadcasts need a manager or admin."""
    notification = get_notification(identity, notification_id)
    if notification.is_broadcast:
        require(identity, MANAGER_ROLES)
    db.session.delete(notification)
    db.session.commit()


def purge_expired(older_than: datetime) -> int:
    """Maintenance: hard-delete notifications that expired before `older_than`."""
    deleted = db.session.query(Notification).filter(
        Notification.expires_at.is_not(None),
        Notification.expires_at < older_than,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
