# backend/tillbook/__init__.py
import logging

from flask import Flask, jsonify, request
from sqlalchemy.exc import IntegrityError

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.getLogger("tillbook").setLevel(app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Audit capture: validate the audited-table registry and install the
    # session listeners. A bad registry stops the app from starting.
    from .services import audit_service
    audit_service.register_audited_tables()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.products import products_bp
    from .routes.customers import customers_bp
    from .routes.invoices import invoices_bp
    from .routes.inventory import inventory_bp
    from .routes.notifications import notifications_bp
    from .routes.audit import audit_bp
    from .routes.settings import settings_bp
    from .routes.connectors import connectors_bp
    from .routes.platform import platform_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(connectors_bp)
    app.register_blueprint(platform_bp)
    app.register_blueprint(reports_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    @app.teardown_request
    def clear_audit_actor(_exc):
        # The scoped session outlives the request in tests; never leak the actor.
        audit_service.clear_actor(db.session())

    _register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def _register_error_handlers(app: Flask) -> None:
    from .services.authorization_service import InsufficientRoleError, UnauthenticatedError
    from .services.tenant_service import NotFoundError, TenantAccessError
    from .validation import IntegrityViolationError

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc):
        db.session.rollback()
        return jsonify({"error": "Not found", "message": str(exc)}), 404

    @app.errorhandler(IntegrityViolationError)
    def handle_integrity_violation(exc):
        db.session.rollback()
        return jsonify({"error": "Conflict", "message": str(exc)}), 409

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(exc):
        db.session.rollback()
        app.logger.warning("Unhandled integrity error: %s", exc.orig)
        return jsonify({"error": "Conflict", "message": "Integrity constraint violated"}), 409

    @app.errorhandler(UnauthenticatedError)
    def handle_unauthenticated(exc):
        return jsonify({"error": "Authentication required", "message": str(exc)}), 401

    @app.errorhandler(InsufficientRoleError)
    def handle_insufficient_role(exc):
        return jsonify({
            "error": "Permission denied",
            "required_roles": list(exc.required_roles),
            "actual_role": exc.actual_role,
            "message": str(exc),
        }), 403

    @app.errorhandler(TenantAccessError)
    def handle_tenant_access(exc):
        return jsonify({"error": "Tenant context required", "message": str(exc)}), 403
