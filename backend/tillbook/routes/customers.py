# Overview: Flask API routes for customers; parses input and returns JSON responses.

"""
Customer routes.

MULTI-TENANT: scoped to g.identity's tenant.
SECURITY: reads and creates for any tenant role; edits and deletes for
managers and admins.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import Customer
from ..permissions import MANAGER_ROLES, TENANT_ROLES
from ..services import customer_service
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_customer,
    validate_payload,
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset(customer_service.CUSTOMER_MUTABLE_FIELDS),
    required_on_create=frozenset({"name"}),
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_role(TENANT_ROLES)
def list_customers_route():
    result = customer_service.list_customers(
        g.identity,
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "false").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_role(TENANT_ROLES)
def get_customer_route(customer_id: int):
    return jsonify(customer_service.get_customer(g.identity, customer_id).to_dict())


@customers_bp.post("")
@require_auth
@require_role(TENANT_ROLES)
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        customer = customer_service.create_customer(g.identity, patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(customer.to_dict()), 201


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_role(MANAGER_ROLES)
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        customer = customer_service.update_customer(g.identity, customer_id, patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(customer.to_dict())


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_role(MANAGER_ROLES)
def delete_customer_route(customer_id: int):
    """Soft delete: the customer stays referenced by its invoices."""
    customer_service.delete_customer(g.identity, customer_id)
    return jsonify({"ok": True}), 200
