# backend/retail_pos/__init__.py
from __future__ import annotations

import logging

from flask import Flask, request

from .config import Config
from .extensions import configure_sqlite_transactions, db, migrate


def _engine_options(config) -> dict:
    options = dict(config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if str(config["SQLALCHEMY_DATABASE_URI"]).startswith("sqlite"):
        # Busy timeout bounds lock waits inside the sale transaction
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", config["SALE_TRANSACTION_TIMEOUT_SECONDS"])
        options["connect_args"] = connect_args
    return options


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app.config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    with app.app_context():
        configure_sqlite_transactions(db.engine)

    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.pos import pos_bp
    from .routes.inventory import inventory_bp
    from .routes.assembly import assembly_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(pos_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(assembly_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or [])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
