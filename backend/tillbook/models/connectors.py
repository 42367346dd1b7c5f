from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

CONNECTOR_STATUSES = ("active", "inactive", "error", "pending")


class TenantConnector(db.Model):
    """
    Configuration for one external integration (accounting, e-commerce...).

    MULTI-TENANT: scoped by tenant_id; a name is unique per tenant and
    connector type. The system stores configuration only, it never calls
    the external service itself.
    """
    __tablename__ = "tenant_connectors"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "connector_type", "name", name="uq_tenant_connectors_tenant_type_name"
        ),
        db.CheckConstraint(
            "status IN ('active', 'inactive', 'error', 'pending')",
            name="ck_tenant_connectors_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )

    connector_type = db.Column(db.String(50), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    config = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(16), nullable=False, default="pending")
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "connector_type": self.connector_type,
            "name": self.name,
            "description": self.description,
            "config": self.config,
            "status": self.status,
            "last_sync_at": to_utc_z(self.last_sync_at),
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
