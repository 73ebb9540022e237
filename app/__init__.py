"""
Community Autopilot
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
)


def init_workflow_services(app):
    """Build the store, notification sink, engine and audit service.

    Everything lands in ``app.extensions`` and is reached from blueprints
    through ``app.utils.helpers``.
    """
    from app.ai.audit_runner import AuditRunner
    from app.services.audit_service import AuditService
    from app.services.notification import build_notification_sink
    from app.services.project_store import build_project_store
    from app.services.workflow_engine import WorkflowEngine

    store = build_project_store(app)
    notifier = build_notification_sink(app)
    engine = WorkflowEngine(
        store, notifier, global_default=app.config.get("GLOBAL_AUTOPILOT_DEFAULT", False)
    )
    runner = AuditRunner.from_config(app.config)
    service = AuditService(
        store, engine, runner, notifier,
        max_steps=app.config.get("AUTOPILOT_MAX_STEPS", 10),
    )

    app.extensions["project_store"] = store
    app.extensions["notification_sink"] = notifier
    app.extensions["workflow_engine"] = engine
    app.extensions["audit_service"] = service
    app.logger.info("Workflow services ready: store=%s notifier=%s providers=%s",
                    type(store).__name__, type(notifier).__name__,
                    ",".join(runner.gateway.available_providers))


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    os.makedirs(app.instance_path, exist_ok=True)  # SQLite dev database lives here

    # ── Structured logging (must be first) ───────────────────────────────
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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so create_all sees every table ────────────────
    from app.models import activity as _activity_models          # noqa: F401
    from app.models import client as _client_models              # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401
    from app.models import project as _project_models            # noqa: F401
    from app.models import settings as _settings_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

        init_workflow_services(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.health_bp import health_bp
    from app.blueprints.notification_bp import notification_bp
    from app.blueprints.projects_bp import projects_bp
    from app.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(notification_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("autopilot-tick")
    @click.option("--owner", "owner_id", default=None, help="Only evaluate this owner's projects.")
    def autopilot_tick_cmd(owner_id):
        """Evaluate automatic stage progression for all projects once."""
        summary = app.extensions["audit_service"].tick(owner_id)
        click.echo(
            f"evaluated={summary['evaluated']} advanced={len(summary['advanced'])} "
            f"failed={len(summary['failed'])} global_autopilot={summary['global_autopilot']}"
        )

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
