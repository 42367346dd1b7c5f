# Overview: Tenant connector configuration CRUD.

"""
Connector Service

MULTI-TENANT: connectors are configuration rows owned by one tenant. The
name is unique per tenant and connector type; a duplicate surfaces as a
ConflictError.
"""
from __future__ import annotations

import logging
import re

from ..extensions import db
from ..models import TenantConnector
from ..models.connectors import CONNECTOR_STATUSES
from ..pagination import paginate
from ..permissions import Identity
from ..time_utils import parse_iso_datetime
from ..validation import ConflictError, ValidationError
from .concurrency import commit_or_conflict
from .tenant_service import get_scoped_or_404, require_tenant_id, scoped_query

logger = logging.getLogger(__name__)

CONNECTOR_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]{1,49}$")
CONNECTOR_FIELDS = {"connector_type", "name", "description", "config", "status", "last_sync_at", "last_error"}

# Known integration types and the config keys each one needs. Other
# lowercase slugs are accepted as custom connectors with no required keys.
CONNECTOR_TYPES = {
    "quickbooks": {
        "display_name": "QuickBooks Online",
        "category": "accounting",
        "description": "Sync customers, products and invoices with QuickBooks Online",
        "required": ("client_id", "client_secret"),
        "optional": ("sandbox",),
    },
    "shopify": {
        "display_name": "Shopify",
        "category": "ecommerce",
        "description": "Sync products and orders with a Shopify store",
        "required": ("shop_domain", "access_token"),
        "optional": ("api_version",),
    },
    "stripe": {
        "display_name": "Stripe",
        "category": "payment",
        "description": "Sync payment data with Stripe",
        "required": ("secret_key", "publishable_key"),
        "optional": ("webhook_secret",),
    },
    "woocommerce": {
        "display_name": "WooCommerce",
        "category": "ecommerce",
        "description": "Sync products and orders with a WooCommerce store",
        "required": ("site_url", "consumer_key", "consumer_secret"),
        "optional": (),
    },
    "api_webhook": {
        "display_name": "Generic API/Webhook",
        "category": "api",
        "description": "Connect to any REST API or receive webhook data",
        "required": ("base_url",),
        "optional": ("api_key", "auth_header", "auth_prefix"),
    },
}


def _clean(payload: dict, *, partial: bool) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(payload) - CONNECTOR_FIELDS - {"id", "tenant_id"})
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    patch = {k: v for k, v in payload.items() if k in CONNECTOR_FIELDS}
    if not partial:
        for key in ("connector_type", "name"):
            if not patch.get(key):
                raise ValidationError(f"{key} is required")

    if "connector_type" in patch:
        value = str(patch["connector_type"]).strip().lower()
        if not CONNECTOR_TYPE_RE.match(value):
            raise ValidationError("connector_type must be lowercase letters, digits or underscores")
        patch["connector_type"] = value
    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise ValidationError("name is required")
        patch["name"] = name[:255]
    if "config" in patch:
        if patch["config"] is None:
            patch["config"] = {}
        elif not isinstance(patch["config"], dict):
            raise ValidationError("config must be a JSON object")
    if "status" in patch and patch["status"] not in CONNECTOR_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(CONNECTOR_STATUSES)}")
    if "last_sync_at" in patch:
        try:
            patch["last_sync_at"] = parse_iso_datetime(patch["last_sync_at"])
        except (AttributeError, TypeError, ValueError):
            raise ValidationError("last_sync_at must be an ISO-8601 datetime")
    return patch


def _ensure_name_free(tenant_id: int, connector_type: str, name: str, exclude_id: int | None = None) -> None:
    q = db.session.query(TenantConnector.id).filter(
        TenantConnector.tenant_id == tenant_id,
        TenantConnector.connector_type == connector_type,
        TenantConnector.name == name,
    )
    if exclude_id is not None:
        q = q.filter(TenantConnector.id != exclude_id)
    if q.first():
        raise ConflictError(f"A {connector_type} connector named {name!r} already exists")


def list_connectors(
    identity: Identity,
    *,
    connector_type: str | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = scoped_query(TenantConnector, identity)
    if connector_type:
        query = query.filter(TenantConnector.connector_type == connector_type)
    if status:
        query = query.filter(TenantConnector.status == status)
    query = query.order_by(TenantConnector.connector_type, TenantConnector.name)
    return paginate(query, page, per_page)


def get_connector(identity: Identity, connector_id: int) -> TenantConnector:
    return get_scoped_or_404(TenantConnector, connector_id, identity, label="Connector")


def create_connector(identity: Identity, payload: dict) -> TenantConnector:
    tenant_id = require_tenant_id(identity)
    patch = _clean(payload, partial=False)
    _ensure_name_free(tenant_id, patch["connector_type"], patch["name"])

    connector = TenantConnector(
        tenant_id=tenant_id,
        config={},
        status="pending",
        created_by=identity.user_id,
        updated_by=identity.user_id,
    )
    for k, v in patch.items():
        setattr(connector, k, v)
    db.session.add(connector)
    commit_or_conflict("Connector name already used for this type")
    logger.info("Connector %s/%s created (tenant %s)", connector.connector_type, connector.name, tenant_id)
    return connector


def update_connector(identity: Identity, connector_id: int, payload: dict) -> TenantConnector:
    connector = get_connector(identity, connector_id)
    patch = _clean(payload, partial=True)

    connector_type = patch.get("connector_type", connector.connector_type)
    name = patch.get("name", connector.name)
    if (connector_type, name) != (connector.connector_type, connector.name):
        _ensure_name_free(connector.tenant_id, connector_type, name, exclude_id=connector.id)

    for k, v in patch.items():
        setattr(connector, k, v)
    connector.updated_by = identity.user_id
    commit_or_conflict("Connector name already used for this type")
    return connector


def delete_connector(identity: Identity, connector_id: int) -> None:
    connector = get_connector(identity, connector_id)
    db.session.delete(connector)
    db.session.commit()
    logger.info("Connector %s deleted (tenant %s)", connector_id, connector.tenant_id)


def list_connector_types() -> list[dict]:
    return [
        {
            "name": name,
            "display_name": info["display_name"],
            "category": info["category"],
            "description": info["description"],
            "required_config": list(info["required"]),
            "optional_config": list(info["optional"]),
        }
        for name, info in sorted(CONNECTOR_TYPES.items(), key=lambda item: (item[1]["category"], item[0]))
    ]


def _missing_config(connector: TenantConnector) -> list[str]:
    info = CONNECTOR_TYPES.get(connector.connector_type)
    if info is None:
        return []
    config = connector.config or {}
    return [
        key for key in info["required"]
        if not isinstance(config.get(key), str) or not config[key].strip()
    ]


def check_connector(identity: Identity, connector_id: int) -> dict:
    """
    Check a connector's stored configuration against its type.

    No request is made to the external service. A failing check moves the
    connector to `error` with last_error set; a passing one clears
    last_error and activates a `pending` or `error` connector.
    """
    connector = get_connector(identity, connector_id)
    missing = _missing_config(connector)

    if missing:
        message = f"Missing configuration: {', '.join(missing)}"
        connector.status = "error"
        connector.last_error = message
    else:
        message = "Configuration complete"
        connector.last_error = None
        if connector.status in ("pending", "error"):
            connector.status = "active"
    connector.updated_by = identity.user_id
    db.session.commit()

    if missing:
        logger.warning("Connector %s check failed: %s", connector.id, message)
    return {
        "success": not missing,
        "message": message,
        "missing": missing,
        "connector": connector.to_dict(),
    }
