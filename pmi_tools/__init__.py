"""
PMI Paramedic Tools: instructor onboarding API.

    from pmi_tools import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

from pmi_tools.config import INSTANCE_DIR, config
from pmi_tools.models import db
from pmi_tools.middleware.logging_config import configure_logging
from pmi_tools.middleware.timing import init_request_timing
from pmi_tools.middleware.jwt_auth import init_jwt_middleware
from pmi_tools.middleware.rate_limiter import init_rate_limits

logger = logging.getLogger(__name__)


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, _record):
    # Cascading deletes of progress/evidence rely on FK enforcement
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Limits are attached per blueprint in init_rate_limits
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _create_tables(app):
    from pmi_tools.models import auth, notification, onboarding  # noqa: F401

    with app.app_context():
        testing = app.config["TESTING"]
        if not testing and app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
            os.makedirs(INSTANCE_DIR, exist_ok=True)
        db.create_all()
        if not testing:
            app.logger.info("Database tables ensured")


def _register_cli(app):
    @app.cli.command("seed-onboarding-template")
    @click.option("--created-by", default="system", help="Recorded as the template author.")
    def seed_onboarding_template_cmd(created_by):
        """Seed the default paramedic instructor onboarding program."""
        from pmi_tools.services.template_service import seed_default_template

        template = seed_default_template(created_by=created_by)
        if template is None:
            click.echo("Default onboarding template already exists; nothing to do.")
        else:
            click.echo(f"Seeded onboarding template id={template.id} ({len(template.phases)} phases).")


def _register_app_errors(app):
    """JSON bodies for errors raised outside the onboarding blueprint."""

    @app.errorhandler(404)
    def _not_found(_e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return {"error": "Method not allowed", "method": request.method}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500


def create_app(config_name=None):
    """
    Build the Flask application.

    ``config_name`` is one of "development", "testing" or "production";
    it defaults to the APP_ENV environment variable.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)
    # Hook order matters: the request id must exist before identity is resolved
    init_request_timing(app)
    init_jwt_middleware(app)

    _create_tables(app)

    from pmi_tools.blueprints.onboarding_bp import onboarding_bp

    app.register_blueprint(onboarding_bp)
    _register_cli(app)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "PMI Paramedic Tools"}

    _register_app_errors(app)
    init_rate_limits(app, limiter)
    return app
