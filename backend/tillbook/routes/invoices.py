# Overview: Flask API routes for invoices and their lifecycle transitions.

"""
Invoice routes.

MULTI-TENANT: every invoice, customer and product is resolved inside
g.identity's tenant.

SECURITY:
- list / get / create / edit draft / send / pay / print: any tenant role
- cancel: manager or admin
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..permissions import MANAGER_ROLES, TENANT_ROLES
from ..services import invoice_service
from ..validation import ConflictError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _json_error(exc: ValueError):
    db.session.rollback()
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


def _detail(invoice) -> dict:
    return invoice.to_dict(include_items=True)


@invoices_bp.get("")
@require_auth
@require_role(TENANT_ROLES)
def list_invoices_route():
    """
    Query params: status, customer_id, search (number or customer name),
    start_date, end_date (YYYY-MM-DD, on invoice_date), page, per_page.
    """
    try:
        result = invoice_service.list_invoices(
            g.identity,
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            search=request.args.get("search"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValueError:
        return jsonify({"error": "start_date and end_date must be YYYY-MM-DD"}), 400
    return jsonify(result)


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_role(TENANT_ROLES)
def get_invoice_route(invoice_id: int):
    return jsonify(_detail(invoice_service.get_invoice(g.identity, invoice_id)))


@invoices_bp.post("")
@require_auth
@require_role(TENANT_ROLES)
def create_invoice_route():
    """
    Create a draft invoice.

    Body: customer_id, items [{product_id, quantity, unit_price_cents?,
    discount_cents?, vat_rate_bps?}], invoice_date?, due_date?,
    payment_terms?, payment_method?, remarks?
    """
    payload = request.get_json(silent=True)
    try:
        invoice = invoice_service.create_invoice(g.identity, payload)
    except ValueError as e:
        return _json_error(e)
    current_app.logger.info("Invoice %s created by user %s", invoice.invoice_number, g.identity.user_id)
    return jsonify(_detail(invoice)), 201


@invoices_bp.put("/<int:invoice_id>")
@require_auth
@require_role(TENANT_ROLES)
def update_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True)
    try:
        invoice = invoice_service.update_draft(g.identity, invoice_id, payload)
    except ValueError as e:
        return _json_error(e)
    return jsonify(_detail(invoice))


@invoices_bp.post("/<int:invoice_id>/send")
@require_auth
@require_role(TENANT_ROLES)
def send_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.send_invoice(g.identity, invoice_id)
    except ValueError as e:
        return _json_error(e)
    return jsonify(_detail(invoice))


@invoices_bp.post("/<int:invoice_id>/pay")
@require_auth
@require_role(TENANT_ROLES)
def pay_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.pay_invoice(g.identity, invoice_id, payload.get("payment_method"))
    except ValueError as e:
        return _json_error(e)
    return jsonify(_detail(invoice))


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_role(MANAGER_ROLES)
def cancel_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.cancel_invoice(g.identity, invoice_id, payload.get("reason"))
    except ValueError as e:
        return _json_error(e)
    return jsonify(_detail(invoice))


@invoices_bp.post("/<int:invoice_id>/print")
@require_auth
@require_role(TENANT_ROLES)
def print_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.record_print(g.identity, invoice_id)
    except ValueError as e:
        return _json_error(e)
    return jsonify({"id": invoice.id, "print_count": invoice.print_count})
