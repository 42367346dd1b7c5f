# Overview: Flask API routes for reading the tenant audit trail.

"""
Audit log routes (read-only).

The audit trail is append-only: there is no route to edit or delete
entries. MULTI-TENANT: only the caller's tenant entries are visible.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import ADMIN_ROLES, MANAGER_ROLES
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _filters() -> dict:
    return {
        "action": request.args.get("action"),
        "entity_type": request.args.get("entity_type"),
        "entity_id": request.args.get("entity_id", type=int),
        "user_id": request.args.get("user_id", type=int),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
    }


@audit_bp.get("/logs")
@require_auth
@require_role(ADMIN_ROLES)
def list_audit_logs_route():
    """
    Query params: action, entity_type, entity_id, user_id, start_date,
    end_date (YYYY-MM-DD or ISO datetime), page, per_page.
    """
    try:
        result = audit_service.list_audit_logs(
            g.identity,
            filters=_filters(),
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
        )
    except ValueError:
        return jsonify({"error": "Invalid date filter"}), 400
    return jsonify(result)


@audit_bp.get("/recent")
@require_auth
@require_role(MANAGER_ROLES)
def recent_activity_route():
    items = audit_service.recent_activity(g.identity, limit=request.args.get("limit", 10, type=int))
    return jsonify({"items": items, "count": len(items)})


@audit_bp.get("/entities/<entity_type>/<int:entity_id>")
@require_auth
@require_role(ADMIN_ROLES)
def entity_history_route(entity_type: str, entity_id: int):
    items = audit_service.entity_history(g.identity, entity_type, entity_id)
    return jsonify({"items": items, "count": len(items)})
