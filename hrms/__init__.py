"""
HRMS Funding Allocation Service
Flask Application Factory.

Usage:
    from hrms import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from hrms.config import config
from hrms.middleware.jwt_auth import init_jwt_middleware
from hrms.middleware.logging_config import configure_logging
from hrms.middleware.rate_limiter import init_rate_limits
from hrms.middleware.security_headers import init_security_headers
from hrms.middleware.timing import init_request_timing
from hrms.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_obj = config[config_name]
    app.config.from_object(config_obj() if config_name == "production" else config_obj)

    # ── Logging (must be first) ──────────────────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Models (registered on db.metadata for Alembic / create_all) ─────
    from hrms.models import audit as _audit_models            # noqa: F401
    from hrms.models import employment as _employment_models  # noqa: F401
    from hrms.models import funding as _funding_models        # noqa: F401
    from hrms.models import grant as _grant_models            # noqa: F401
    from hrms.models import probation as _probation_models    # noqa: F401

    if config_name == "development":
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from hrms.blueprints.employment_bp import employment_bp
    from hrms.blueprints.funding_allocation_bp import funding_allocation_bp
    from hrms.blueprints.grant_bp import grant_bp
    from hrms.blueprints.health_bp import health_bp
    from hrms.blueprints.probation_bp import probation_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(grant_bp)
    app.register_blueprint(employment_bp)
    app.register_blueprint(probation_bp)
    app.register_blueprint(funding_allocation_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("process-probation-completions")
    @click.option(
        "--date", "as_of", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
        help="Completion date (YYYY-MM-DD), default today.",
    )
    def process_probation_completions_cmd(as_of):
        """Mark probation passed for employments whose probation ends on the given date."""
        from hrms.services.probation_service import process_due_completions
        result = process_due_completions(as_of.date() if as_of else None)
        click.echo(f"Processed {result['processed']} probation completion(s), {result['failed']} failed.")

    @app.cli.command("issue-token")
    @click.option("--user", "user_id", required=True)
    @click.option("--role", "roles", multiple=True, required=True)
    @click.option("--name", default=None)
    def issue_token_cmd(user_id, roles, name):
        """Print an access token for local testing."""
        from hrms.services.jwt_service import generate_access_token
        click.echo(generate_access_token(user_id, list(roles), name=name))

    # ── Error handlers ───────────────────────────────────────────────────
    def _error(message, status):
        return {"success": False, "message": message}, status

    @app.errorhandler(404)
    def not_found(e):
        return _error("Not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error("Method not allowed", 405)

    @app.errorhandler(413)
    def too_large(e):
        return _error("Request body too large", 413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return _error(e.description or "Unsupported media type", 415)

    @app.errorhandler(429)
    def rate_limited(e):
        return {"success": False, "message": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return _error("Internal server error", 500)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
