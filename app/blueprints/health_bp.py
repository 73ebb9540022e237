"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  : simple 200 for load balancers
    GET /api/v1/health/live   : detailed health (database, store, LLM providers)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe: always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
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

    # ── Project store ────────────────────────────────────────────────
    store = current_app.extensions.get("project_store")
    checks["store"] = {
        "status": "ok" if store is not None else "error",
        "backend": type(store).__name__ if store is not None else None,
    }
    if store is None:
        overall = False

    # ── LLM providers ────────────────────────────────────────────────
    service = current_app.extensions.get("audit_service")
    if service is not None:
        checks["llm"] = {
            "status": "ok",
            "providers": service.runner.gateway.available_providers,
        }
    else:
        checks["llm"] = {"status": "skipped"}

    checks["app"] = {
        "name": "Community Autopilot",
        "debug": current_app.debug,
        "testing": current_app.testing,
        "demo_mode": bool(current_app.config.get("DEMO_MODE")),
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
