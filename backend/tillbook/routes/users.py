# Overview: Flask API routes for tenant user administration and the caller's own profile.

"""
User management routes.

MULTI-TENANT: admins see and manage the users of their own tenant only.
SECURITY: every route except /profile requires the admin role.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..permissions import ADMIN_ROLES
from ..services import user_service
from ..validation import ConflictError


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _json_error(exc: Exception):
    db.session.rollback()
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


@users_bp.get("/profile")
@require_auth
def get_profile_route():
    return jsonify(g.current_user.to_dict())


@users_bp.put("/profile")
@require_auth
def update_profile_route():
    payload = request.get_json(silent=True) or {}
    try:
        user = user_service.update_profile(g.current_user, payload)
    except ValueError as e:
        return _json_error(e)
    return jsonify(user.to_dict())


@users_bp.get("")
@require_auth
@require_role(ADMIN_ROLES)
def list_users_route():
    """
    Query params: search, role, status (active|inactive), page, per_page.
    """
    result = user_service.list_users(
        g.identity,
        search=request.args.get("search"),
        role=request.args.get("role"),
        status=request.args.get("status"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@users_bp.get("/<int:user_id>")
@require_auth
@require_role(ADMIN_ROLES)
def get_user_route(user_id: int):
    return jsonify(user_service.get_user(g.identity, user_id).to_dict())


@users_bp.post("")
@require_auth
@require_role(ADMIN_ROLES)
def create_user_route():
    """Create a user in the caller's tenant. Enforces the tenant's max_users."""
    payload = request.get_json(silent=True) or {}
    try:
        user = user_service.create_tenant_user(g.identity, payload)
    except ValueError as e:
        return _json_error(e)
    return jsonify(user.to_dict()), 201


@users_bp.put("/<int:user_id>")
@require_auth
@require_role(ADMIN_ROLES)
def update_user_route(user_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        user = user_service.update_user(g.identity, user_id, payload)
    except ValueError as e:
        return _json_error(e)
    return jsonify(user.to_dict())


@users_bp.post("/<int:user_id>/deactivate")
@require_auth
@require_role(ADMIN_ROLES)
def deactivate_user_route(user_id: int):
    try:
        user = user_service.deactivate_user(g.identity, user_id)
    except ValueError as e:
        return _json_error(e)
    return jsonify(user.to_dict())


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(ADMIN_ROLES)
def delete_user_route(user_id: int):
    try:
        user_service.delete_user(g.identity, user_id)
    except ValueError as e:
        return _json_error(e)
    return jsonify({"ok": True}), 200
