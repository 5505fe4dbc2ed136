"""
KEON Task Manager
Flask Application Factory.

Usage:
    from keon import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from keon.config import config
from keon.middleware.logging_config import configure_logging
from keon.middleware.rate_limiter import init_rate_limits
from keon.middleware.timing import init_request_timing
from keon.models import db
from keon.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Tests switch this off before the app is created.
_SQLITE_FK_ENFORCEMENT = True


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if not _SQLITE_FK_ENFORCEMENT:
        return
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
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Import all models so Alembic and create_all see them ─────────────
    from keon.models import org as _org_models                  # noqa: F401
    from keon.models import template as _template_models        # noqa: F401
    from keon.models import task as _task_models                # noqa: F401
    from keon.models import material as _material_models        # noqa: F401
    from keon.models import recurrence as _recurrence_models    # noqa: F401
    from keon.models import audit as _audit_models              # noqa: F401
    from keon.models import notification as _notification_models  # noqa: F401
    from keon.models import scheduling as _scheduling_models    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from keon.blueprints import register_error_handlers
    from keon.blueprints.functions_bp import functions_bp
    from keon.blueprints.health_bp import health_bp
    from keon.blueprints.notification_bp import notification_bp
    from keon.blueprints.requests_bp import requests_bp
    from keon.blueprints.tasks_bp import tasks_bp
    from keon.blueprints.templates_bp import templates_bp
    from keon.blueprints.validation_bp import validation_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(templates_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(validation_bp)
    app.register_blueprint(functions_bp)
    app.register_blueprint(notification_bp)

    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("process-recurrence")
    def process_recurrence_cmd():
        """Run one recurrence tick: create requests for every due template."""
        from keon.services.recurrence import process_recurrence
        outcome = process_recurrence()
        click.echo(json.dumps(outcome, indent=2, ensure_ascii=False))

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Execute a registered scheduled job by name."""
        from keon.services.scheduler_service import SchedulerService
        outcome = SchedulerService.run_job(job_name)
        click.echo(json.dumps(outcome, indent=2, default=str, ensure_ascii=False))

    # ── Application-level error handlers ─────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})
        return e

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(
            E.VALIDATION_CONSTRAINT, "Too many requests", status=429,
            details={"retry_after": e.description},
        )

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("keon.services.scheduled_jobs")  # registers @register_job handlers
    from keon.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    SchedulerService.ensure_jobs_registered()

    return app
