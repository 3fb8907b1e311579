"""
QA Tracking Dashboard
Health probes.

    GET /api/v1/health/ready   200 while the process serves requests
    GET /api/v1/health/live    database round-trip + AI credential state

``live`` answers 503 only when the database is unreachable; a missing AI
key is reported but leaves the service healthy (only the two AI endpoints
depend on it).
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.blueprints.ai_bp import get_gateway
from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Health: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _ai_check() -> dict:
    model = current_app.config.get("AI_CHAT_MODEL")
    configured = get_gateway().is_configured(model)
    return {"status": "ok" if configured else "not_configured", "model": model}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check(), "ai": _ai_check()}
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
