# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

"""
Inventory routes.

Stock only changes by appending movements. Product.stock is a cache of
the ledger sum and can be reconciled on demand.

SECURITY: reading for any tenant role; recording movements and
reconciling for managers and admins.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import MANAGER_ROLES, TENANT_ROLES
from ..services import inventory_service
from ..validation import ConflictError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
@require_auth
@require_role(MANAGER_ROLES)
def record_movement_route():
    """
    Body: product_id, movement_type (purchase|sale|adjustment|return),
    quantity (signed delta), unit_cost_cents?, reason?,
    reference_type?, reference_id?
    """
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("product_id")
    if not isinstance(product_id, int) or isinstance(product_id, bool):
        return jsonify({"error": "product_id is required"}), 400

    try:
        movement = inventory_service.record_movement(
            g.identity,
            product_id=product_id,
            movement_type=payload.get("movement_type"),
            quantity=payload.get("quantity"),
            unit_cost_cents=payload.get("unit_cost_cents"),
            reason=payload.get("reason"),
            reference_type=payload.get("reference_type"),
            reference_id=payload.get("reference_id"),
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(movement.to_dict()), 201


@inventory_bp.get("/movements")
@require_auth
@require_role(TENANT_ROLES)
def list_movements_route():
    result = inventory_service.list_movements(
        g.identity,
        product_id=request.args.get("product_id", type=int),
        movement_type=request.args.get("movement_type"),
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id", type=int),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@inventory_bp.get("/products/<int:product_id>/stock")
@require_auth
@require_role(TENANT_ROLES)
def stock_level_route(product_id: int):
    return jsonify(inventory_service.stock_summary(g.identity, product_id))


@inventory_bp.post("/products/<int:product_id>/reconcile")
@require_auth
@require_role(MANAGER_ROLES)
def reconcile_route(product_id: int):
    return jsonify(inventory_service.reconcile_stock(g.identity, product_id))
