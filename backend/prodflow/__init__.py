# backend/prodflow/__init__.py
from flask import Flask, request, jsonify

from .config import Config
from .extensions import db, migrate


def _register_error_handlers(app: Flask) -> None:
    from .validation import ValidationError, ConflictError, NotFoundError
    from .services.permission_service import PermissionDeniedError
    from .services.auth_service import AuthError, PasswordValidationError

    # Routes map domain errors themselves; these catch anything that escapes
    error_statuses = (
        (NotFoundError, 404),
        (ConflictError, 409),
        (ValidationError, 400),
        (PasswordValidationError, 400),
        (AuthError, 401),
        (PermissionDeniedError, 403),
    )

    for exc_class, status in error_statuses:
        def handler(e, status=status):
            return jsonify({"error": str(e)}), status
        app.register_error_handler(exc_class, handler)

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.roles import roles_bp
    from .routes.users import users_bp
    from .routes.inventory import inventory_bp
    from .routes.production import production_bp
    from .routes.templates import templates_bp
    from .routes.notifications import notifications_bp
    from .routes.audit import audit_bp
    from .routes.dashboard import dashboard_bp
    from .routes.timekeeping import timekeeping_bp
    from .routes.quality import quality_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(roles_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(production_bp)
    app.register_blueprint(templates_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(timekeeping_bp)
    app.register_blueprint(quality_bp)

    _register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            # Refresh token travels as an HTTP-only cookie
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
