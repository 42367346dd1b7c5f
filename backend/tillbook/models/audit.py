from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

AUDIT_ACTIONS = ("INSERT", "UPDATE", "DELETE")
SYSTEM_LOG_LEVELS = ("error", "warn", "info", "debug")
SYSTEM_LOG_MESSAGE_MAX = 1000


class AuditLogEntry(db.Model):
    """
    Immutable record of one mutation of one audited row.

    Written only by services/audit_service.py from inside the flush that
    performs the mutation. Entries are never updated or deleted by the
    application; they disappear only with their tenant (ON DELETE CASCADE).

    user_id is SET NULL when the acting user is deleted so the entry
    survives the user.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_tenant_created", "tenant_id", "created_at"),
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.CheckConstraint(
            "action IN ('INSERT', 'UPDATE', 'DELETE')",
            name="ck_audit_logs_action",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    action = db.Column(db.String(10), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    old_values = db.Column(db.JSON(none_as_null=True), nullable=True)
    new_values = db.Column(db.JSON(none_as_null=True), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }


class SystemLogEntry(db.Model):
    """Platform-level log line. Not tenant data, append-only."""
    __tablename__ = "system_logs"
    __table_args__ = (
        db.CheckConstraint(
            "level IN ('error', 'warn', 'info', 'debug')",
            name="ck_system_logs_level",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.String(8), nullable=False, index=True)
    message = db.Column(db.String(SYSTEM_LOG_MESSAGE_MAX), nullable=False)
    meta = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "level": self.level,
            "message": self.message,
            "meta": self.meta,
            "created_at": to_utc_z(self.created_at),
        }
