# backend/tillbook/services/products_service.py
"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are tenant-scoped through the
caller's Identity (tenant_service.scoped_query / get_scoped_or_404).
SKUs are unique within a tenant.

Stock is never written here: opening stock becomes an adjustment in the
stock ledger (inventory_service).
"""
from __future__ import annotations

import logging

from ..extensions import db
from ..models import Product
from ..pagination import paginate
from ..permissions import Identity
from ..validation import ConflictError, ValidationError
from . import inventory_service
from .concurrency import commit_or_conflict
from .tenant_service import get_scoped_or_404, require_tenant_id, scoped_query

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "name", "description", "sku", "barcode", "category", "brand", "supplier",
    "price_cents", "cost_price_cents", "unit", "reorder_point", "vat_rate_bps",
    "hsn_code", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_sku_free(tenant_id: int, sku: str | None, exclude_id: int | None = None) -> None:
    if not sku:
        return
    query = db.session.query(Product.id).filter(Product.tenant_id == tenant_id, Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("SKU already exists for this tenant.")


def list_products(
    identity: Identity,
    *,
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Tenant-scoped product listing.

    search matches name, SKU and barcode. low_stock keeps products at or
    below their reorder point.
    """
    query = scoped_query(Product, identity)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Product.name.ilike(like),
            Product.sku.ilike(like),
            Product.barcode.ilike(like),
        ))
    if category:
        query = query.filter(Product.category == category)
    if low_stock:
        query = query.filter(Product.stock <= Product.reorder_point)

    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page, per_page)


def get_product(identity: Identity, product_id: int) -> Product:
    return get_scoped_or_404(Product, product_id, identity)


def create_product(identity: Identity, *, patch: dict, opening_stock: int | None = None) -> Product:
    """
    Create product in the caller's tenant using a validated patch dict.

    Raises:
        ConflictError: If SKU already exists in the tenant
        ValidationError: If opening_stock is not a non-negative integer
    """
    tenant_id = require_tenant_id(identity)
    _ensure_sku_free(tenant_id, patch.get("sku"))

    if opening_stock is not None and (
        not isinstance(opening_stock, int) or isinstance(opening_stock, bool) or opening_stock < 0
    ):
        raise ValidationError("opening_stock must be a non-negative integer")

    p = Product(tenant_id=tenant_id, stock=0, created_by=identity.user_id, updated_by=identity.user_id)
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.flush()

    if opening_stock:
        inventory_service.append_movement(
            p,
            "adjustment",
            opening_stock,
            unit_cost_cents=p.cost_price_cents,
            reason="Opening stock",
            created_by=identity.user_id,
        )

    commit_or_conflict("SKU already exists for this tenant.")
    logger.info("Created product %s in tenant %s", p.id, tenant_id)
    return p


def update_product(identity: Identity, product_id: int, patch: dict) -> Product:
    """
    Update a product of the caller's tenant.

    Raises:
        NotFoundError: product missing or in another tenant
        ConflictError: If new SKU already exists in the tenant
    """
    p = get_scoped_or_404(Product, product_id, identity)

    if "sku" in patch and patch["sku"] != p.sku:
        _ensure_sku_free(p.tenant_id, patch["sku"], exclude_id=p.id)

    apply_product_patch(p, patch)
    p.updated_by = identity.user_id
    commit_or_conflict("SKU already exists for this tenant.")
    return p


def delete_product(identity: Identity, product_id: int, *, hard: bool = False) -> None:
    """
    Soft-delete (is_active=False) by default.

    hard=True removes the row with its stock ledger; a product still
    referenced by invoice lines cannot be removed (IntegrityViolationError).
    """
    p = get_scoped_or_404(Product, product_id, identity)

    if hard:
        db.session.delete(p)
        commit_or_conflict("Product is referenced by invoices; deactivate it instead.")
        logger.info("Hard-deleted product %s in tenant %s", product_id, identity.tenant_id)
        return

    # Soft-delete only: preserve IDs and historical references.
    if p.is_active:
        p.is_active = False
        p.updated_by = identity.user_id
    db.session.commit()


def list_categories(identity: Identity) -> list[str]:
    rows = (
        scoped_query(Product, identity)
        .filter(Product.is_active.is_(True))
        .with_entities(Product.category)
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [r.category for r in rows if r.category]


def list_low_stock(identity: Identity) -> list[dict]:
    products = (
        scoped_query(Product, identity)
        .filter(Product.is_active.is_(True), Product.stock <= Product.reorder_point)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
    return [p.to_dict() for p in products]
