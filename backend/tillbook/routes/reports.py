# Overview: Flask API routes for tenant reports; parses query args and returns JSON.

"""
Report routes.

SECURITY: managers and admins only. Every report is scoped to the caller's
tenant by the service layer.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import MANAGER_ROLES
from ..services import reports_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range_args() -> dict:
    return {"start": request.args.get("start_date"), "end": request.args.get("end_date")}


@reports_bp.get("/sales-summary")
@require_auth
@require_role(MANAGER_ROLES)
def sales_summary_route():
    try:
        report = reports_service.sales_summary(
            g.identity,
            group_by=request.args.get("group_by", "day"),
            **_range_args(),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(report)


@reports_bp.get("/product-performance")
@require_auth
@require_role(MANAGER_ROLES)
def product_performance_route():
    try:
        report = reports_service.product_performance(
            g.identity,
            limit=request.args.get("limit", type=int),
            **_range_args(),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(report)


@reports_bp.get("/customer-analysis")
@require_auth
@require_role(MANAGER_ROLES)
def customer_analysis_route():
    try:
        report = reports_service.customer_analysis(
            g.identity,
            limit=request.args.get("limit", type=int),
            **_range_args(),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(report)


@reports_bp.get("/tax-summary")
@require_auth
@require_role(MANAGER_ROLES)
def tax_summary_route():
    try:
        report = reports_service.tax_summary(g.identity, **_range_args())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(report)


@reports_bp.get("/inventory")
@require_auth
@require_role(MANAGER_ROLES)
def inventory_report_route():
    report = reports_service.inventory_report(
        g.identity,
        category=request.args.get("category"),
        low_stock_only=request.args.get("low_stock_only", "false").lower() == "true",
    )
    return jsonify(report)
