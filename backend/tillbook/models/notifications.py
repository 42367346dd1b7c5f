from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

NOTIFICATION_TYPES = ("info", "warning", "error", "success")
NOTIFICATION_CATEGORIES = ("system", "inventory", "invoice", "user", "payment")
NOTIFICATION_PRIORITIES = ("low", "medium", "high", "critical")


class Notification(db.Model):
    """
    In-app notification.

    MULTI-TENANT: always scoped by tenant_id. user_id NULL means the
    notification is broadcast to every user of the tenant; broadcasts carry
    a single shared read flag.

    LIFECYCLE: unread -> read happens once. read_at is written only on that
    transition. Past expires_at a notification drops out of default lists
    but is kept and can still be fetched by id.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_tenant_user_read", "tenant_id", "user_id", "is_read"),
        db.Index("ix_notifications_tenant_created", "tenant_id", "created_at"),
        db.Index("ix_notifications_entity", "entity_type", "entity_id"),
        db.CheckConstraint(
            "type IN ('info', 'warning', 'error', 'success')", name="ck_notifications_type"
        ),
        db.CheckConstraint(
            "category IN ('system', 'inventory', 'invoice', 'user', 'payment')",
            name="ck_notifications_category",
        ),
        db.CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'critical')",
            name="ck_notifications_priority",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )

    type = db.Column(db.String(16), nullable=False)
    category = db.Column(db.String(16), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="medium")

    entity_type = db.Column(db.String(50), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    action_url = db.Column(db.String(500), nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_broadcast(self) -> bool:
        return self.user_id is None

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "type": self.type,
            "category": self.category,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action_url": self.action_url,
            "is_read": self.is_read,
            "read_at": to_utc_z(self.read_at),
            "expires_at": to_utc_z(self.expires_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
