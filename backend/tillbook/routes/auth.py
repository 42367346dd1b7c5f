# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

SECURITY:
- Self-registration does not exist; admins create users (/api/users)
- Login is by email; users of suspended/expired tenants cannot log in
- Repeated failed logins for one email are throttled (429)
- Changing the password revokes every session of the user
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..models import Tenant
from ..extensions import db
from ..permissions import ROLE_DESCRIPTIONS
from ..services import auth_service, login_throttle_service, session_service
from ..time_utils import to_utc_z
from ..validation import ValidationError


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns the plaintext token once; only its hash is stored. Too many
    failed attempts for one email lock it out with 429.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        status = login_throttle_service.get_lockout_status(email)
        if status.locked:
            return _locked_response(status)

        user = auth_service.authenticate(email, password)
        if not user:
            status = login_throttle_service.record_failed_attempt(
                email, ip_address=ip_address, user_agent=user_agent
            )
            if status.locked:
                return _locked_response(status)
            body = {"error": "Invalid credentials"}
            if status.remaining_attempts <= 2:
                body["warning"] = f"{status.remaining_attempts} attempts remaining before account lockout"
            return jsonify(body), 401

        login_throttle_service.record_successful_login(user, ip_address=ip_address, user_agent=user_agent)

        session, token = session_service.create_session(
            user,
            user_agent=user_agent,
            ip_address=ip_address,
        )

        return jsonify({
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "user": user.to_dict(),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Login failed"}), 500


def _locked_response(status):
    response = jsonify({
        "error": "Account temporarily locked due to too many failed login attempts",
        "locked": True,
        "retry_after_seconds": status.seconds_until_unlock,
    })
    response.headers["Retry-After"] = str(status.seconds_until_unlock)
    return response, 429


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.auth_token, "User logout")
        db.session.commit()
        return jsonify({"message": "Logged out successfully"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Logout failed"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user, role and tenant."""
    user = g.current_user
    tenant = db.session.get(Tenant, user.tenant_id) if user.tenant_id else None
    return jsonify({
        "user": user.to_dict(),
        "role": g.identity.role.value,
        "role_description": ROLE_DESCRIPTIONS[g.identity.role],
        "tenant": tenant.to_dict() if tenant else None,
        "session": g.session_context.session.to_dict(),
    })


@auth_bp.put("/password")
@require_auth
def change_password_route():
    """Change own password. All sessions, including this one, are revoked."""
    data = request.get_json(silent=True) or {}
    current_password = data.get("current_password")
    new_password = data.get("new_password")
    if not current_password or not new_password:
        return jsonify({"error": "current_password and new_password required"}), 400

    try:
        auth_service.change_password(g.current_user, current_password, new_password)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    revoked = session_service.revoke_all_user_sessions(g.current_user.id, "Password changed")
    return jsonify({
        "message": "Password changed. Please log in again.",
        "sessions_revoked": revoked,
    }), 200
