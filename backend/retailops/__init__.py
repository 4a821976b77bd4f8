# backend/retailops/__init__.py
import logging

from flask import Flask, request
from sqlalchemy.engine import make_url

from .config import Config
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    """Bound every store round trip by STORE_TIMEOUT_SECONDS."""
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    timeout = float(app.config.get("STORE_TIMEOUT_SECONDS", 5))

    backend = make_url(app.config["SQLALCHEMY_DATABASE_URI"]).get_backend_name()
    if backend == "sqlite":
        connect_args.setdefault("timeout", timeout)
    elif backend == "postgresql":
        connect_args.setdefault("options", f"-c statement_timeout={int(timeout * 1000)}")

    options["connect_args"] = connect_args
    return options


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    # Registers the session commit/rollback listeners
    from .services import change_feed  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.coupons import coupons_bp
    from .routes.warehouse import warehouse_bp
    from .routes.returns import returns_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(warehouse_bp)
    app.register_blueprint(returns_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor-Id, X-Actor-Roles"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
