from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

TENANT_STATUSES = ("active", "suspended", "trial", "expired")
SERVICEABLE_TENANT_STATUSES = frozenset({"active", "trial"})
SUBSCRIPTION_PLANS = ("basic", "standard", "premium")


class Tenant(db.Model):
    """
    Multi-tenant root: every business using the system is a Tenant.

    MULTI-TENANT: Users (except the superadmin), customers, products,
    invoices, stock movements, settings, connectors, notifications and
    audit log entries all carry tenant_id with ON DELETE CASCADE. Deleting
    a tenant removes all of them; system logs are not tenant data.

    No ORM collections hang off Tenant so that a delete is left entirely
    to the database cascade.
    """
    __tablename__ = "tenants"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active', 'suspended', 'trial', 'expired')",
            name="ck_tenants_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(20), nullable=True)
    address = db.Column(db.Text, nullable=True)
    pan_number = db.Column(db.String(20), nullable=True)
    vat_number = db.Column(db.String(20), nullable=True)

    subscription_plan = db.Column(db.String(16), nullable=False, default="basic")
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    features = db.Column(db.JSON, nullable=False, default=list)
    max_users = db.Column(db.Integer, nullable=False, default=5)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_serviceable(self) -> bool:
        return self.status in SERVICEABLE_TENANT_STATUSES

    def has_feature(self, flag: str) -> bool:
        return flag in (self.features or [])

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "pan_number": self.pan_number,
            "vat_number": self.vat_number,
            "subscription_plan": self.subscription_plan,
            "status": self.status,
            "features": sorted(self.features or []),
            "max_users": self.max_users,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TenantSettings(db.Model):
    """
    One settings document per tenant, stored as sectioned JSON.

    The section schema lives in services/settings_service.py; this row only
    persists the validated document. UNIQUE(tenant_id) makes a second row
    an integrity violation.
    """
    __tablename__ = "tenant_settings"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_tenant_settings_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    settings = db.Column(db.JSON, nullable=False)

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
            "settings": self.settings,
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
