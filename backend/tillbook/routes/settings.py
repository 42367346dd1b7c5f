# Overview: Flask API routes for the tenant settings document.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import ADMIN_ROLES, TENANT_ROLES
from ..services import settings_service
from ..validation import ConflictError, ValidationError


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
@require_role(TENANT_ROLES)
def get_settings_route():
    """Full settings document; defaults fill anything the tenant never saved."""
    return jsonify(settings_service.get_settings(g.identity))


@settings_bp.get("/defaults")
@require_auth
@require_role(TENANT_ROLES)
def get_default_settings_route():
    return jsonify(settings_service.default_settings())


@settings_bp.put("/<section>")
@require_auth
@require_role(ADMIN_ROLES)
def update_section_route(section: str):
    payload = request.get_json(silent=True)
    try:
        document = settings_service.update_section(g.identity, section, payload)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(document)
