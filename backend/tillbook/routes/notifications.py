# Overview: Flask API routes for in-app notifications.

"""
Notification routes.

MULTI-TENANT: a user sees notifications addressed to them plus the
broadcasts (user_id NULL) of their tenant.
SECURITY: creating notifications needs a manager or admin; deleting a
broadcast too (enforced in the service).
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import MANAGER_ROLES, TENANT_ROLES
from ..services import notification_service
from ..services.authorization_service import InsufficientRoleError


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


def _optional_bool(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() == "true"


@notifications_bp.get("")
@require_auth
@require_role(TENANT_ROLES)
def list_notifications_route():
    """
    Query params: is_read (true|false), type, category, priority,
    include_expired (true), page, per_page. Response carries unread_count.
    """
    result = notification_service.list_notifications(
        g.identity,
        is_read=_optional_bool("is_read"),
        type=request.args.get("type"),
        category=request.args.get("category"),
        priority=request.args.get("priority"),
        include_expired=bool(_optional_bool("include_expired")),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@notifications_bp.get("/unread-count")
@require_auth
@require_role(TENANT_ROLES)
def unread_count_route():
    return jsonify({"unread_count": notification_service.unread_count(g.identity)})


@notifications_bp.get("/<int:notification_id>")
@require_auth
@require_role(TENANT_ROLES)
def get_notification_route(notification_id: int):
    return jsonify(notification_service.get_notification(g.identity, notification_id).to_dict())


@notifications_bp.post("")
@require_auth
@require_role(MANAGER_ROLES)
def create_notification_route():
    payload = request.get_json(silent=True) or {}
    try:
        notification = notification_service.create_for_identity(g.identity, payload)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(notification.to_dict()), 201


@notifications_bp.put("/<int:notification_id>/read")
@require_auth
@require_role(TENANT_ROLES)
def mark_read_route(notification_id: int):
    notification = notification_service.mark_as_read(g.identity, notification_id)
    return jsonify(notification.to_dict())


@notifications_bp.put("/read-all")
@require_auth
@require_role(TENANT_ROLES)
def mark_all_read_route():
    updated = notification_service.mark_all_as_read(g.identity)
    return jsonify({"updated": updated})


@notifications_bp.delete("/<int:notification_id>")
@require_auth
@require_role(TENANT_ROLES)
def delete_notification_route(notification_id: int):
    try:
        notification_service.delete_notification(g.identity, notification_id)
    except InsufficientRoleError as e:
        return jsonify({
            "error": "Permission denied",
            "required_roles": list(e.required_roles),
            "actual_role": e.actual_role,
        }), 403
    return jsonify({"ok": True}), 200
