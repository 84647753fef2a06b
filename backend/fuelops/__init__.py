# backend/fuelops/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.reference import reference_bp
    from .routes.orders import orders_bp
    from .routes.pfis import pfis_bp
    from .routes.audit import audit_bp
    from .routes.bank_accounts import bank_accounts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(reference_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(pfis_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(bank_accounts_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", []))
    actor_header = app.config.get("ACTOR_HEADER", "X-User-Id")

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = f"{actor_header}, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
