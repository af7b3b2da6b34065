"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/live   - simple 200 if the process is serving
    GET /api/v1/health/ready  - database reachability
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from phaseflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness probe: always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe with a database ping."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    checks["app"] = {
        "name": "PhaseFlow",
        "auto_advance": current_app.config.get("AUTO_ADVANCE_PHASES", False),
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
