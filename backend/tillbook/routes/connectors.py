# Overview: Flask API routes for tenant connector configuration.

"""
Connector routes.

SECURITY: managers and admins may read connector configuration; only
admins may change or check it. Outbound sync is not performed here.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..permissions import ADMIN_ROLES, MANAGER_ROLES
from ..services import connector_service
from ..validation import ConflictError


connectors_bp = Blueprint("connectors", __name__, url_prefix="/api/connectors")


def _json_error(exc: ValueError):
    db.session.rollback()
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


@connectors_bp.get("")
@require_auth
@require_role(MANAGER_ROLES)
def list_connectors_route():
    result = connector_service.list_connectors(
        g.identity,
        connector_type=request.args.get("connector_type"),
        status=request.args.get("status"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result)


@connectors_bp.get("/types")
@require_auth
@require_role(MANAGER_ROLES)
def connector_types_route():
    return jsonify(connector_service.list_connector_types())


@connectors_bp.get("/<int:connector_id>")
@require_auth
@require_role(MANAGER_ROLES)
def get_connector_route(connector_id: int):
    return jsonify(connector_service.get_connector(g.identity, connector_id).to_dict())


@connectors_bp.post("")
@require_auth
@require_role(ADMIN_ROLES)
def create_connector_route():
    try:
        connector = connector_service.create_connector(g.identity, request.get_json(silent=True))
    except ValueError as e:
        return _json_error(e)
    return jsonify(connector.to_dict()), 201


@connectors_bp.put("/<int:connector_id>")
@require_auth
@require_role(ADMIN_ROLES)
def update_connector_route(connector_id: int):
    try:
        connector = connector_service.update_connector(g.identity, connector_id, request.get_json(silent=True))
    except ValueError as e:
        return _json_error(e)
    return jsonify(connector.to_dict())


@connectors_bp.delete("/<int:connector_id>")
@require_auth
@require_role(ADMIN_ROLES)
def delete_connector_route(connector_id: int):
    connector_service.delete_connector(g.identity, connector_id)
    return jsonify({"ok": True}), 200


@connectors_bp.post("/<int:connector_id>/test")
@require_auth
@require_role(ADMIN_ROLES)
def check_connector_route(connector_id: int):
    """Validate stored configuration; sets status and last_error."""
    return jsonify(connector_service.check_connector(g.identity, connector_id))
