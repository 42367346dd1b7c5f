# Overview: Request decorators: bearer authentication and role gates for API routes.

import logging
from functools import wraps

from flask import g, jsonify, request

from .extensions import db
from .services import audit_service, session_service
from .services.authorization_service import DenialReason, authorize

logger = logging.getLogger(__name__)


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require authentication and establish the request identity.

    Sets on Flask g:
    - g.identity: the resolved Identity passed to services
    - g.current_user: the authenticated User row
    - g.session_context: the full SessionContext

    The identity and client address are bound to the database session so
    every audited mutation in this request is attributed to it.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired, idle or revoked token
    - User account deactivated
    - Tenant suspended or expired
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.identity = context.identity
        g.current_user = context.user
        g.session_context = context
        g.auth_token = token

        audit_service.bind_actor(
            db.session(),
            context.identity,
            request.remote_addr,
            request.headers.get("User-Agent"),
        )
        return f(*args, **kwargs)

    return decorated_function


def require_role(required):
    """
    Require the identity's role to be one of `required` (a Role, a role
    name, or a collection of either). Must run after @require_auth.

    Denials are logged and answered with the required and actual roles.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            decision = authorize(getattr(g, "identity", None), required)
            if decision.allowed:
                return f(*args, **kwargs)

            if decision.reason is DenialReason.UNAUTHENTICATED:
                return jsonify({"error": "Authentication required"}), 401

            logger.warning(
                "Authorization denied: user=%s role=%s required=%s path=%s %s",
                g.identity.user_id,
                decision.actual_role,
                ",".join(decision.required_roles),
                request.method,
                request.path,
            )
            return jsonify({
                "error": "Permission denied",
                "required_roles": list(decision.required_roles),
                "actual_role": decision.actual_role,
                "message": f"Requires one of: {', '.join(decision.required_roles)}",
            }), 403

        return decorated_function
    return decorator
