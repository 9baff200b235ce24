"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database status plus background queue depth
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.scheduling import SideEffectTask
from app.models.tender import AwardReconciliation

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Background queues ────────────────────────────────────────────
    if overall:
        checks["side_effects"] = {
            "pending": SideEffectTask.query.filter_by(status="pending").count(),
            "dead": SideEffectTask.query.filter_by(status="dead").count(),
        }
        checks["award_reconciliation"] = {
            "pending": AwardReconciliation.query.filter_by(status="pending").count(),
            "failed": AwardReconciliation.query.filter_by(status="failed").count(),
        }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Construction Collaboration Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
