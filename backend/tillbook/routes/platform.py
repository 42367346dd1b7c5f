# Overview: Flask API routes for superadmin platform operations.

"""
Platform routes.

SECURITY: every route requires the superadmin role. These are the only
HTTP paths that read or change data across tenants.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..permissions import PLATFORM_ROLES
from ..services import platform_service
from ..validation import ConflictError


platform_bp = Blueprint("platform", __name__, url_prefix="/api/platform")


def _json_error(exc: ValueError):
    db.session.rollback()
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


@platform_bp.get("/tenants")
@require_auth
@require_role(PLATFORM_ROLES)
def list_tenants_route():
    result = platform_service.list_tenants(
        search=request.args.get("search"),
        status=request.args.get("status"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@platform_bp.get("/tenants/<int:tenant_id>")
@require_auth
@require_role(PLATFORM_ROLES)
def get_tenant_route(tenant_id: int):
    return jsonify(platform_service.tenant_details(tenant_id))


@platform_bp.post("/tenants")
@require_auth
@require_role(PLATFORM_ROLES)
def create_tenant_route():
    """Body: tenant fields, plus optional admin {email, password, full_name}."""
    try:
        tenant, admin = platform_service.create_tenant(
            request.get_json(silent=True), created_by=g.identity.user_id
        )
    except ValueError as e:
        return _json_error(e)
    return jsonify({
        "tenant": tenant.to_dict(),
        "admin": admin.to_dict() if admin else None,
    }), 201


@platform_bp.put("/tenants/<int:tenant_id>")
@require_auth
@require_role(PLATFORM_ROLES)
def update_tenant_route(tenant_id: int):
    try:
        tenant = platform_service.update_tenant(
            tenant_id, request.get_json(silent=True), updated_by=g.identity.user_id
        )
    except ValueError as e:
        return _json_error(e)
    return jsonify(tenant.to_dict())


@platform_bp.put("/tenants/<int:tenant_id>/status")
@require_auth
@require_role(PLATFORM_ROLES)
def set_tenant_status_route(tenant_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        tenant = platform_service.set_tenant_status(
            tenant_id, payload.get("status"), updated_by=g.identity.user_id
        )
    except ValueError as e:
        return _json_error(e)
    return jsonify(tenant.to_dict())


@platform_bp.delete("/tenants/<int:tenant_id>")
@require_auth
@require_role(PLATFORM_ROLES)
def delete_tenant_route(tenant_id: int):
    """Deletes the tenant and, by cascade, all of its data and audit trail."""
    result = platform_service.delete_tenant(tenant_id, deleted_by=g.identity.user_id)
    current_app.logger.warning("Tenant %s deleted by superadmin %s", tenant_id, g.identity.user_id)
    return jsonify(result), 200


@platform_bp.get("/system-logs")
@require_auth
@require_role(PLATFORM_ROLES)
def list_system_logs_route():
    try:
        result = platform_service.list_system_logs(
            level=request.args.get("level"),
            search=request.args.get("search"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValueError:
        return jsonify({"error": "start_date and end_date must be YYYY-MM-DD"}), 400
    return jsonify(result)


@platform_bp.post("/system-logs")
@require_auth
@require_role(PLATFORM_ROLES)
def create_system_log_route():
    try:
        entry = platform_service.create_system_log(request.get_json(silent=True) or {})
    except ValueError as e:
        return _json_error(e)
    return jsonify(entry.to_dict()), 201


@platform_bp.get("/audit-logs")
@require_auth
@require_role(PLATFORM_ROLES)
def list_all_audit_logs_route():
    filters = {
        "tenant_id": request.args.get("tenant_id", type=int),
        "action": request.args.get("action"),
        "entity_type": request.args.get("entity_type"),
        "entity_id": request.args.get("entity_id", type=int),
        "user_id": request.args.get("user_id", type=int),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
    }
    try:
        result = platform_service.list_audit_logs(
            filters=filters,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValueError:
        return jsonify({"error": "Invalid date filter"}), 400
    return jsonify(result)


@platform_bp.get("/stats")
@require_auth
@require_role(PLATFORM_ROLES)
def platform_stats_route():
    try:
        return jsonify(platform_service.platform_stats())
    except Exception:
        current_app.logger.exception("Failed to compute platform stats")
        return jsonify({"error": "Failed to compute platform stats"}), 500
