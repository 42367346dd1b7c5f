# Overview: Tenant settings document: typed sections, defaults, validated per-section updates.

"""
Tenant Settings

The settings row holds one JSON document with a fixed set of sections.
Each section is described by a dataclass; its field defaults are the
values a tenant sees before saving anything. Stored documents are always
read through the dataclasses, so keys added later fall back to their
defaults and unknown stored keys are dropped.
"""

import logging
from dataclasses import asdict, dataclass, fields

from ..extensions import db
from ..models import TenantSettings
from ..permissions import Identity
from ..validation import ValidationError
from .concurrency import commit_or_conflict
from .tenant_service import require_tenant_id

logger = logging.getLogger(__name__)


@dataclass
class GeneralSettings:
    company_name: str = "Your Company Name"
    company_address: str = "Your Company Address"
    pan_number: str = ""
    phone: str = ""
    email: str = ""
    currency: str = "NPR"
    timezone: str = "Asia/Kathmandu"
    language: str = "en"
    date_format: str = "YYYY-MM-DD"


@dataclass
class TaxSettings:
    default_vat_rate_bps: int = 1300
    enable_tax: bool = True
    tax_number: str = ""


@dataclass
class PosSettings:
    enable_barcode_scanner: bool = True
    print_receipt_automatically: bool = False
    show_stock_in_pos: bool = True
    allow_negative_stock: bool = False


@dataclass
class NotificationSettings:
    low_stock_alert: bool = True
    email_notifications: bool = True
    sms_notifications: bool = False


@dataclass
class AppearanceSettings:
    theme: str = "light"
    primary_color: str = "blue"
    show_logo: bool = True


@dataclass
class SecuritySettings:
    enforce_strong_passwords: bool = True
    session_timeout_minutes: int = 30
    two_factor_auth: bool = False


SECTIONS = {
    "general": GeneralSettings,
    "tax": TaxSettings,
    "pos": PosSettings,
    "notifications": NotificationSettings,
    "appearance": AppearanceSettings,
    "security": SecuritySettings,
}

CHOICES = {
    ("general", "currency"): ("NPR", "USD", "EUR"),
    ("appearance", "theme"): ("light", "dark", "auto"),
    ("appearance", "primary_color"): ("blue", "green", "purple", "red"),
}

RANGES = {
    ("tax", "default_vat_rate_bps"): (0, 10_000),
    ("security", "session_timeout_minutes"): (5, 480),
}

MAX_LENGTHS = {
    ("general", "company_name"): 255,
    ("general", "company_address"): 1000,
    ("general", "pan_number"): 20,
    ("general", "phone"): 20,
    ("general", "email"): 255,
    ("tax", "tax_number"): 50,
}

REQUIRED = {
    ("general", "company_name"),
    ("general", "company_address"),
}


def default_settings() -> dict:
    return {name: asdict(cls()) for name, cls in SECTIONS.items()}


def _load_section(name: str, stored: dict | None):
    cls = SECTIONS[name]
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in (stored or {}).items() if k in known}
    return cls(**values)


def _normalize(stored: dict | None) -> dict:
    stored = stored or {}
    return {name: asdict(_load_section(name, stored.get(name))) for name in SECTIONS}


def _validate_value(section: str, key: str, expected: type, value):
    if expected is bool:
        if not isinstance(value, bool):
            raise ValidationError(f"{section}.{key} must be a boolean")
    elif expected is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{section}.{key} must be an integer")
        low, high = RANGES.get((section, key), (None, None))
        if low is not None and not low <= value <= high:
            raise ValidationError(f"{section}.{key} must be between {low} and {high}")
    elif expected is str:
        if not isinstance(value, str):
            raise ValidationError(f"{section}.{key} must be a string")
        value = value.strip()
        if (section, key) in REQUIRED and len(value) < 2:
            raise ValidationError(f"{section}.{key} is required")
        limit = MAX_LENGTHS.get((section, key))
        if limit is not None and len(value) > limit:
            raise ValidationError(f"{section}.{key} exceeds max length {limit}")
        if key == "email" and value and "@" not in value:
            raise ValidationError(f"{section}.{key} must be a valid email address")
    allowed = CHOICES.get((section, key))
    if allowed is not None and value not in allowed:
        raise ValidationError(f"{section}.{key} must be one of: {', '.join(allowed)}")
    return value


def validate_section(section: str, values: dict, current: dict | None = None) -> dict:
    """
    Validate a partial update of one section and merge it onto `current`.

    Unknown sections and unknown keys are rejected.
    """
    cls = SECTIONS.get(section)
    if cls is None:
        raise ValidationError(f"Invalid settings section: {section}")
    if not isinstance(values, dict):
        raise ValidationError("Section values must be a JSON object")

    types = {f.name: f.type for f in fields(cls)}
    unknown = sorted(set(values) - set(types))
    if unknown:
        raise ValidationError(f"Unknown {section} settings: {', '.join(unknown)}")

    merged = asdict(_load_section(section, current))
    for key, value in values.items():
        merged[key] = _validate_value(section, key, types[key], value)
    return merged


def _get_row(tenant_id: int) -> TenantSettings | None:
    return db.session.query(TenantSettings).filter_by(tenant_id=tenant_id).first()


def get_tenant_settings(tenant_id: int) -> dict:
    """Full settings document for a tenant, defaults filled in."""
    row = _get_row(tenant_id)
    return _normalize(row.settings if row else None)


def get_settings(identity: Identity) -> dict:
    return get_tenant_settings(require_tenant_id(identity))


def get_setting(tenant_id: int, section: str, key: str):
    return get_tenant_settings(tenant_id)[section][key]


def update_section(identity: Identity, section: str, values: dict) -> dict:
    """
    Validate and save one section. Creates the tenant's settings row on
    first save. Returns the full settings document.
    """
    tenant_id = require_tenant_id(identity)
    row = _get_row(tenant_id)
    document = _normalize(row.settings if row else None)
    document[section] = validate_section(section, values, document.get(section))

    if row is None:
        row = TenantSettings(
            tenant_id=tenant_id,
            settings=document,
            created_by=identity.user_id,
            updated_by=identity.user_id,
        )
        db.session.add(row)
    else:
        # JSON columns track reassignment, not in-place mutation.
        row.settings = document
        row.updated_by = identity.user_id

    commit_or_conflict("Settings already exist for this tenant")
    logger.info("Tenant %s updated %s settings", tenant_id, section)
    return document
