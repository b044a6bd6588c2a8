"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - `flask db migrate` to work without starting the full server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  3. Register the record store backend and the mirror push dispatcher
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string
     (monetary amounts are transmitted as strings, never JS numbers)

Note on model imports:
  The Record model is imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic inspects it.
"""

from __future__ import annotations

import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# All monetary amounts are serialised as strings to preserve precision;
# amounts are never sent as JS number types.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Registered on the Flask app so that jsonify() and flask.json.dumps()
    automatically produce string amounts.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # The import side effect registers the records table on db.metadata.
    with app.app_context():
        from backend.app.models import record  # noqa: F401

        # Tests run against a throwaway SQLite database; everything else
        # is migrated with Alembic.
        if app.config.get("TESTING"):
            db.create_all()

    _register_store(app)
    _register_sync_dispatcher(app)

    # ── Blueprints ─────────────────────────────────────────────────────────
    _register_blueprints(app)

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)
    _register_cors(app)

    app.logger.info(
        "SplitPlus started (config=%s, store=%s)",
        config_name, app.config["STORE_BACKEND"],
    )
    return app


def _register_store(app: Flask) -> None:
    """
    STORE_BACKEND=memory keeps one InMemoryRecordStore for the app's lifetime.
    STORE_BACKEND=sql needs nothing here: get_store() wraps db.session per request.
    """
    from backend.app.extensions import MEMORY_STORE_KEY
    from backend.app.store.record_store import InMemoryRecordStore

    backend = app.config.get("STORE_BACKEND", "sql")
    if backend == "memory":
        app.extensions[MEMORY_STORE_KEY] = InMemoryRecordStore()
    elif backend != "sql":
        raise ValueError(f"Unknown STORE_BACKEND {backend!r}; expected 'sql' or 'memory'.")


def _register_sync_dispatcher(app: Flask) -> None:
    from backend.app.extensions import SYNC_DISPATCHER_KEY
    from backend.app.services.sync_service import SyncDispatcher

    app.extensions[SYNC_DISPATCHER_KEY] = SyncDispatcher(
        max_workers=app.config["SHEET_SYNC_MAX_WORKERS"],
        inline=app.config["SHEET_SYNC_INLINE"],
    )


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Blueprint names match the route files in app/routes/.
    The url_prefix is set here so individual route files only specify
    the path relative to their resource (e.g. "" and "/<string:group_id>").
    """
    from backend.app.routes.auth import auth_bp
    from backend.app.routes.balances import balances_bp
    from backend.app.routes.expenses import expenses_bp
    from backend.app.routes.groups import groups_bp
    from backend.app.routes.users import users_bp

    app.register_blueprint(auth_bp,     url_prefix="/api/v1/auth")
    app.register_blueprint(groups_bp,   url_prefix="/api/v1/groups")
    # expenses_bp is registered at /api/v1 (not /api/v1/expenses) because it
    # owns BOTH /groups/<id>/expenses (create/list) AND /expenses/<id> (get/put/delete).
    app.register_blueprint(expenses_bp, url_prefix="/api/v1")
    app.register_blueprint(balances_bp, url_prefix="/api/v1/groups")
    app.register_blueprint(users_bp,    url_prefix="/api/v1/users")


def _discard_uncommitted() -> None:
    """
    Drops any write the failed request made before raising.

    The SQL session is also discarded at teardown, but the in-memory store
    lives for the whole app and must be rolled back explicitly.
    """
    from backend.app.extensions import get_store

    get_store().rollback()


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError    → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      Exception   → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server. Every handler rolls back
    uncommitted writes first.
    """
    from backend.app.errors import AppError, ErrorCode

    http_codes = {
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.METHOD_NOT_ALLOWED,
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        _discard_uncommitted()
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST field error is returned ("one error, not many").
        If the message is itself an ErrorCode constant it becomes the code;
        otherwise INVALID_FIELD or MISSING_FIELD is used.
        """
        _discard_uncommitted()

        messages = error.messages  # e.g. {"split_type": ["INVALID_SPLIT_TYPE"]}

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                elif isinstance(field_errors, dict):
                    # Nested field (e.g. split_inputs.<uid>): report the first leaf.
                    raw_message = str(next(iter(field_errors.values()), "Invalid value."))
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."

        if raw_message in vars(ErrorCode).values():
            code = raw_message
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
        else:
            code = ErrorCode.INVALID_FIELD

        response_body = {
            "error": {
                "code": code,
                "message": raw_message if raw_message not in vars(ErrorCode).values()
                else _code_to_message(code),
            }
        }
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        HTTPExceptions (404 for unknown URLs, 405, ...) keep their status.
        """
        if isinstance(error, HTTPException):
            return jsonify({
                "error": {
                    "code": http_codes.get(error.code, ErrorCode.BAD_REQUEST),
                    "message": error.description,
                }
            }), error.code

        _discard_uncommitted()
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development.

    Enabled when DEBUG or TESTING is true so a frontend served from another
    local port can call the API with Authorization headers.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            # Reflect origin when present so bearer-auth requests from local
            # dev servers are accepted by browsers.
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself
    (e.g. INVALID_SPLIT_TYPE raised by the split_type enum field).
    """
    _messages = {
        "INVALID_SPLIT_TYPE": "split_type must be 'EQUAL', 'EXACT' or 'PERCENTAGE'.",
        "INVALID_STORAGE_TYPE": "storage_type must be 'LOCAL' or 'SHEET'.",
    }
    return _messages.get(code, "Invalid input.")
