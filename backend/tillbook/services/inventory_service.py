# Overview: Stock ledger: record movements, derive stock, reconcile the cached value, stock alerts.

"""
Tillbook Inventory Invariants (authoritative)

Inventory model:
- Stock is ledger-derived: SUM(quantity) over a product's StockMovement rows.
- Product.stock is a cache. It is rewritten from the ledger after every
  movement and by reconcile_* (CLI: `flask inventory reconcile`).
- Movements are append-only; corrections are new movements.

Sign rules per movement type:
- purchase: quantity > 0 (may carry unit_cost_cents)
- return:   quantity > 0
- sale:     quantity < 0
- adjustment: quantity != 0

Stock may go below zero only when the tenant's pos.allow_negative_stock
setting is on.

Alerts:
- Crossing down to the reorder point emits a low-stock notification,
  reaching zero or below emits out-of-stock (notifications.low_stock_alert).
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..pagination import paginate
from ..permissions import Identity
from ..validation import ConflictError, ValidationError
from . import notification_service, settings_service
from .concurrency import lock_for_update
from .tenant_service import get_scoped_or_404, require_tenant_id

logger = logging.getLogger(__name__)


def validate_movement(movement_type: str, quantity, unit_cost_cents=None) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if quantity == 0:
        raise ValidationError("quantity must be non-zero")
    if movement_type in ("purchase", "return") and quantity < 0:
        raise ValidationError(f"quantity must be > 0 for {movement_type}")
    if movement_type == "sale" and quantity > 0:
        raise ValidationError("quantity must be < 0 for sale")
    if unit_cost_cents is not None:
        if not isinstance(unit_cost_cents, int) or isinstance(unit_cost_cents, bool) or unit_cost_cents < 0:
            raise ValidationError("unit_cost_cents must be a non-negative integer")


def get_stock_level(tenant_id: int, product_id: int) -> int:
    """Stock from the ledger: SUM(quantity) of the product's movements."""
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity), 0)
    ).filter(
        StockMovement.tenant_id == tenant_id,
        StockMovement.product_id == product_id,
    )
    return int(q.scalar() or 0)


def _alert_if_low(product: Product, previous_stock: int, created_by: int | None) -> None:
    if not settings_service.get_setting(product.tenant_id, "notifications", "low_stock_alert"):
        return

    current = product.stock
    if current <= 0 < previous_stock:
        notification_service.notify_from_template(
            "out_of_stock",
            tenant_id=product.tenant_id,
            created_by=created_by,
            product_name=product.name,
            product_id=product.id,
        )
    elif current <= product.reorder_point < previous_stock and current > 0:
        notification_service.notify_from_template(
            "low_stock",
            tenant_id=product.tenant_id,
            created_by=created_by,
            product_name=product.name,
            current_stock=current,
            reorder_point=product.reorder_point,
            product_id=product.id,
        )


def append_movement(
    product: Product,
    movement_type: str,
    quantity: int,
    *,
    unit_cost_cents: int | None = None,
    reference: tuple[str, int] | None = None,
    reason: str | None = None,
    created_by: int | None = None,
    allow_negative: bool | None = None,
) -> StockMovement:
    """
    Append one movement for an already tenant-checked product and refresh
    its cached stock. Flushes, does not commit.

    Raises:
        ValidationError: sign/type rules violated
        ConflictError: stock would go negative and the tenant forbids it
    """
    validate_movement(movement_type, quantity, unit_cost_cents)

    previous_stock = get_stock_level(product.tenant_id, product.id)
    new_stock = previous_stock + quantity

    if new_stock < 0 and quantity < 0:
        if allow_negative is None:
            allow_negative = settings_service.get_setting(product.tenant_id, "pos", "allow_negative_stock")
        if not allow_negative:
            raise ConflictError(
                f"Insufficient stock for {product.name}: available {previous_stock}, requested {-quantity}"
            )

    reference_type, reference_id = reference if reference else (None, None)
    movement = StockMovement(
        tenant_id=product.tenant_id,
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        created_by=created_by,
    )
    db.session.add(movement)

    product.stock = new_stock
    if movement_type == "purchase" and unit_cost_cents is not None:
        product.cost_price_cents = unit_cost_cents
    if created_by is not None:
        product.updated_by = created_by
    db.session.flush()

    _alert_if_low(product, previous_stock, created_by)
    return movement


def record_movement(
    identity: Identity,
    *,
    product_id: int,
    movement_type: str,
    quantity,
    unit_cost_cents=None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    """
    API-facing movement. The product is looked up inside the caller's
    tenant (and locked where the database supports it), then committed.
    """
    validate_movement(movement_type, quantity, unit_cost_cents)
    product = get_scoped_or_404(Product, product_id, identity, for_update=True)
    if not product.is_active:
        raise ConflictError("Product is inactive")

    reference = (reference_type, reference_id) if reference_type and reference_id is not None else None
    movement = append_movement(
        product,
        movement_type,
        quantity,
        unit_cost_cents=unit_cost_cents,
        reference=reference,
        reason=reason,
        created_by=identity.user_id,
    )
    db.session.commit()
    logger.info(
        "Recorded %s of %s for product %s (tenant %s)",
        movement_type, quantity, product.id, product.tenant_id,
    )
    return movement


def list_movements(
    identity: Identity,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    tenant_id = require_tenant_id(identity)
    query = db.session.query(StockMovement).filter(StockMovement.tenant_id == tenant_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)
    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    return paginate(query, page, per_page)


def stock_summary(identity: Identity, product_id: int) -> dict:
    """Cached and ledger stock of one product, side by side."""
    product = get_scoped_or_404(Product, product_id, identity)
    ledger = get_stock_level(product.tenant_id, product.id)
    return {
        "product_id": product.id,
        "cached_stock": product.stock,
        "ledger_stock": ledger,
        "in_sync": product.stock == ledger,
        "reorder_point": product.reorder_point,
        "is_low_stock": ledger <= product.reorder_point,
    }


def reconcile_product_stock(product: Product) -> tuple[int, int]:
    """Rewrite the cached stock from the ledger. Returns (old, new). Does not commit."""
    old = product.stock
    new = get_stock_level(product.tenant_id, product.id)
    if old != new:
        product.stock = new
        logger.warning(
            "Reconciled product %s stock (tenant %s): cached %s -> ledger %s",
            product.id, product.tenant_id, old, new,
        )
    return old, new


def reconcile_stock(identity: Identity, product_id: int) -> dict:
    product = get_scoped_or_404(Product, product_id, identity, for_update=True)
    old, new = reconcile_product_stock(product)
    db.session.commit()
    return {"product_id": product.id, "previous_stock": old, "stock": new, "changed": old != new}


def reconcile_all(tenant_id: int | None = None) -> list[dict]:
    """
    Reconcile every product (optionally of one tenant). Used by the CLI.
    Stock changes are audited like any other product update.
    """
    query = db.session.query(Product)
    if tenant_id is not None:
        query = query.filter(Product.tenant_id == tenant_id)

    changed = []
    for product in lock_for_update(query.order_by(Product.id)).all():
        old, new = reconcile_product_stock(product)
        if old != new:
            changed.append({
                "tenant_id": product.tenant_id,
                "product_id": product.id,
                "previous_stock": old,
                "stock": new,
            })
    db.session.commit()
    return changed
