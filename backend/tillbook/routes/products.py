# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product management routes with multi-tenant support.

MULTI-TENANT: All product operations are scoped to the caller's tenant,
taken from g.identity (set by @require_auth).

SECURITY:
- Read operations: any tenant role
- Write operations: manager or admin
- Hard delete: admin only
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Product
from ..permissions import ADMIN_ROLES, MANAGER_ROLES, TENANT_ROLES
from ..services import products_service
from ..services.authorization_service import InsufficientRoleError, require
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset(products_service.PRODUCT_MUTABLE_FIELDS),
    required_on_create=frozenset({"name", "category", "price_cents"}),
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str) -> bool:
    return request.args.get(name, "false").lower() == "true"


@products_bp.get("")
@require_auth
@require_role(TENANT_ROLES)
def list_products_route():
    """
    List products of the caller's tenant.

    Query params:
    - search: matches name, SKU, barcode
    - category: exact category
    - low_stock: "true" keeps stock <= reorder_point
    - include_inactive: "true" includes soft-deleted products
    - page, per_page
    """
    result = products_service.list_products(
        g.identity,
        search=request.args.get("search"),
        category=request.args.get("category"),
        low_stock=_flag("low_stock"),
        include_inactive=_flag("include_inactive"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@products_bp.get("/categories")
@require_auth
@require_role(TENANT_ROLES)
def list_categories_route():
    categories = products_service.list_categories(g.identity)
    return jsonify({"items": categories, "count": len(categories)})


@products_bp.get("/low-stock")
@require_auth
@require_role(TENANT_ROLES)
def list_low_stock_route():
    items = products_service.list_low_stock(g.identity)
    return jsonify({"items": items, "count": len(items)})


@products_bp.get("/<int:product_id>")
@require_auth
@require_role(TENANT_ROLES)
def get_product_route(product_id: int):
    return jsonify(products_service.get_product(g.identity, product_id).to_dict())


@products_bp.post("")
@require_auth
@require_role(MANAGER_ROLES)
def create_product_route():
    """
    Create a product in the caller's tenant.

    `opening_stock` (optional) is recorded as an adjustment movement.
    """
    payload = dict(request.get_json(silent=True) or {})
    opening_stock = payload.pop("opening_stock", None)
    payload.pop("stock", None)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        created = products_service.create_product(g.identity, patch=patch, opening_stock=opening_stock)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(created.to_dict()), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(MANAGER_ROLES)
def update_product_route(product_id: int):
    """Partial update. Stock is changed through /api/inventory, never here."""
    payload = dict(request.get_json(silent=True) or {})
    if "stock" in payload:
        return jsonify({"error": "stock is derived from movements; use /api/inventory/movements"}), 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        updated = products_service.update_product(g.identity, product_id, patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify(updated.to_dict())


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(MANAGER_ROLES)
def delete_product_route(product_id: int):
    """Soft delete; `?hard=true` removes the row (admin only)."""
    hard = _flag("hard")
    if hard:
        try:
            require(g.identity, ADMIN_ROLES)
        except InsufficientRoleError as e:
            return jsonify({
                "error": "Permission denied",
                "required_roles": list(e.required_roles),
                "actual_role": e.actual_role,
            }), 403

    try:
        products_service.delete_product(g.identity, product_id, hard=hard)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409

    return jsonify({"ok": True}), 200
