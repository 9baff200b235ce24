"""
Construction Collaboration Platform
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
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine
from sqlalchemy.exc import SQLAlchemyError

from app.config import config
from app.core.exceptions import (
    ConcurrentModification,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


def register_error_handlers(app):
    """Map service exceptions to the standard JSON error body."""

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)

    @app.errorhandler(InvalidTransition)
    def _invalid_transition(exc):
        return api_error(E.INVALID_TRANSITION, str(exc), details={
            "entity_id": exc.entity_id,
            "action": exc.action,
            "current_state": exc.current_state,
        })

    @app.errorhandler(PermissionDenied)
    def _permission_denied(exc):
        return api_error(E.FORBIDDEN, str(exc), details={
            "entity_id": exc.entity_id,
            "action": exc.action,
        })

    @app.errorhandler(ConcurrentModification)
    def _concurrent(exc):
        return api_error(E.CONCURRENT_MODIFICATION, str(exc), details={
            "entity_id": exc.entity_id,
            "expected_state": exc.expected_state,
            "retryable": True,
        })

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc))

    @app.errorhandler(SQLAlchemyError)
    def _database(exc):
        db.session.rollback()
        logger.error("Database error on %s %s: %s", request.method, request.path, exc,
                     exc_info=True)
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def _route_not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": E.INTERNAL}, 500


def register_cli(app):

    @app.cli.command("drain-side-effects")
    @click.option("--limit", default=500, show_default=True, help="Max tasks to run.")
    def drain_side_effects_cmd(limit):
        """Execute due side-effect tasks once."""
        from app.services.side_effects import SideEffectDispatcher
        results = SideEffectDispatcher().drain(limit=limit)
        click.echo(f"Side effects: {results}")

    @app.cli.command("reconcile-awards")
    def reconcile_awards_cmd():
        """Converge awarded tenders pending reconciliation."""
        from app.services.award import AwardCoordinator
        results = AwardCoordinator().reconcile_pending()
        click.echo(f"Award reconciliation: {results}")

    @app.cli.command("dispatch-reminders")
    def dispatch_reminders_cmd():
        """Send due review reminders."""
        from app.services.reminder_scheduler import dispatch_due_reminders
        results = dispatch_due_reminders()
        click.echo(f"Reminders: {results}")


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

    config_cls = config[config_name]
    if hasattr(config_cls, "validate"):
        config_cls.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_cls)
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        from flask import abort
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import audit as _audit_models             # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401
    from app.models import scheduling as _scheduling_models   # noqa: F401
    from app.models import tender as _tender_models           # noqa: F401
    from app.models import workflow as _workflow_models       # noqa: F401

    # ── Auto-create tables outside production (migrations own prod) ──────
    if config_name != "production":
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.health_bp import health_bp
    from app.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(workflow_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    register_cli(app)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("app.services.scheduled_jobs")  # registers @register_job handlers
    from app.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
