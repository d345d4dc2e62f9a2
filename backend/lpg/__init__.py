# backend/lpg/__init__.py
from flask import Flask, request

from .config import Config, engine_options_for
from .extensions import db, migrate
from .errors import register_error_handlers


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    # Overrides must land before extensions bind their engines
    if test_config:
        app.config.update(test_config)
    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options_for(app.config["SQLALCHEMY_DATABASE_URI"], app.config["DB_OPERATION_TIMEOUT_SECONDS"]),
    )

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    register_error_handlers(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.products import products_bp, brands_bp
    from .routes.cylinders import cylinders_bp
    from .routes.customers import customers_bp
    from .routes.sales import sales_bp
    from .routes.delivery import delivery_bp
    from .routes.safety import safety_bp
    from .routes.audit import audit_bp
    from .routes.analytics import analytics_bp
    from .routes.feedback import feedback_bp
    from .routes.purchase_history import purchase_history_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(brands_bp)
    app.register_blueprint(cylinders_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(delivery_bp)
    app.register_blueprint(safety_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(feedback_bp)
    app.register_blueprint(purchase_history_bp)

    @app.after_request
    def write_deferred_security_events(response):
        from .services.permission_service import flush_deferred_security_events
        flush_deferred_security_events()
        return response

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
