# backend/partnerbooks/__init__.py
import logging
from copy import deepcopy

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import LedgerError, internal_error_response
from .extensions import db, migrate


def _engine_options(app: Flask) -> dict:
    options = deepcopy(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        # Bound the wait on SQLite's database lock
        connect_args = options.setdefault("connect_args", {})
        connect_args.setdefault("timeout", app.config["DB_LOCK_TIMEOUT_SECONDS"])
    return options


def create_app(test_config: dict | None = None, blob_store=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Blob storage collaborator, created once per app
    if blob_store is None:
        from .services.blob_service import LocalBlobStore
        blob_store = LocalBlobStore(app.config["UPLOAD_FOLDER"], app.config["UPLOAD_BASE_URL"])
    app.extensions["blob_store"] = blob_store

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.partners import partners_bp
    from .routes.transactions import transactions_bp
    from .routes.cost_entries import cost_entries_bp
    from .routes.sales import sales_bp
    from .routes.allocations import allocations_bp
    from .routes.sync import sync_bp
    from .routes.uploads import uploads_bp
    from .routes.exports import exports_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(partners_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(cost_entries_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(allocations_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(exports_bp)
    app.register_blueprint(users_bp)

    @app.errorhandler(LedgerError)
    def handle_ledger_error(exc: LedgerError):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.description, "kind": "http_error"}), exc.code
        db.session.rollback()
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return internal_error_response()

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
