"""
QA Tracking Dashboard
Flask application factory.

    from app import create_app
    app = create_app()           # APP_ENV, default "development"
    app = create_app("testing")

Order matters: logging first (everything after it logs), blueprints before
error handlers, rate limits last because they attach to registered
blueprints.
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from app.config import config
from app.core.exceptions import (
    AIConfigurationError,
    AIResponseParseError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing
from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
# Storage and on/off switch come from RATELIMIT_* config keys
limiter = Limiter(key_func=get_remote_address, default_limits=[])

# Uploads are multipart; everything else under /api must be JSON
_MULTIPART_PATHS = ("/api/v1/requirements/import",)


@event.listens_for(Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses (and cascades) unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, resources={r"/api/*": {"origins": [o.strip() for o in origins.split(",") if o.strip()]}})
    else:
        CORS(app, resources={r"/api/*": {"origins": "*"}})


def _install_request_guards(app):
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413)
        if request.method not in ("POST", "PUT", "PATCH") or not request.path.startswith("/api/"):
            return None
        if request.path.startswith(_MULTIPART_PATHS):
            return None
        ctype = request.content_type or ""
        if request.content_length and "json" not in ctype:
            abort(415, description="Content-Type must be application/json")
        return None


def _register_blueprints(app):
    from app.blueprints.ai_bp import ai_bp
    from app.blueprints.dashboard_bp import dashboard_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.requirement_bp import requirement_bp
    from app.blueprints.scenario_bp import scenario_bp
    from app.blueprints.testing_bp import testing_bp

    for bp in (requirement_bp, testing_bp, scenario_bp, dashboard_bp, ai_bp, health_bp):
        app.register_blueprint(bp)


def _register_error_handlers(app):
    """Domain exceptions and HTTP errors → ``{"error", "code"?, "details"?}``."""

    @app.errorhandler(NotFoundError)
    def _not_found_error(e):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        db.session.rollback()
        code = E.VALIDATION_REQUIRED if "required" in e.details.values() else E.VALIDATION_INVALID
        return api_error(code, str(e), details=e.details)

    @app.errorhandler(ConflictError)
    def _conflict_error(e):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(e), details={"field": e.field, "value": e.value})

    @app.errorhandler(AIConfigurationError)
    def _ai_config_error(e):
        logger.error("AI provider not configured: %s", e)
        return api_error(E.AI_CONFIG, str(e))

    @app.errorhandler(AIResponseParseError)
    def _ai_parse_error(e):
        logger.warning("Unparseable AI response (%d chars): %s", len(e.raw or ""), e)
        return api_error(E.AI_PARSE, str(e), details={"raw": e.raw})

    @app.errorhandler(404)
    def _http_404(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def _http_405(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def _http_413(e):
        limit_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return {"error": f"Request body too large (max {limit_mb} MB)"}, 413

    @app.errorhandler(415)
    def _http_415(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def _http_429(e):
        return {"error": "Too many requests", "limit": e.description}, 429

    @app.errorhandler(500)
    def _http_500(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500


def _register_cli(app):
    @app.cli.command("seed-systems")
    def seed_systems_cmd():
        """Create 쇼핑몰 / 공급사 / 관리자 if they are missing."""
        from app.services.requirement_service import seed_systems
        created = seed_systems()
        db.session.commit()
        logger.info("seed-systems: %d created", created)


def create_app(config_name=None):
    """Build an app for ``config_name`` (development / testing / production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")
    cfg = config[config_name]

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(cfg() if config_name == "production" else cfg)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _install_request_guards(app)

    # Model modules must be imported before create_all / Alembic autogenerate
    from app.models import requirement, scenario, testing  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)
    init_rate_limits(app, limiter)

    logger.debug("App created: env=%s", config_name)
    return app
