"""Liveness/health aggregation and readiness probes."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

import db
from api.api_v1.guards import admit, get_rate_limiter
from api.services.monitoring import (
    HEALTHY,
    UNHEALTHY,
    check_database,
    monitor,
    overall_status,
    perform_health_checks,
)
from logging_utils import get_logger
from utils.time_utils import isoformat_utc, utcnow

logger = get_logger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api")


@health_bp.route("/health", methods=["GET"])
def health():
    """Aggregate dependency checks. 200 for healthy/degraded, 503 for unhealthy."""
    admit()

    try:
        checks = perform_health_checks(
            db.SessionLocal,
            rate_limit_backend_configured=get_rate_limiter().durable_configured,
        )
        error_rate = monitor.error_rate()
        status = overall_status(checks, error_rate)
        system = monitor.system_snapshot()
        body = {
            "status": status,
            "timestamp": isoformat_utc(utcnow()),
            "services": [c.as_dict() for c in checks],
            "system": system,
            "metrics": {
                "performance": monitor.performance_stats(),
                "errorRate": error_rate,
            },
            "alerts": monitor.check_alerts(),
            "uptime": system["uptime_seconds"],
        }
    except Exception as e:
        logger.exception("health check failed")
        resp = jsonify({"status": UNHEALTHY, "error": str(e) or type(e).__name__})
        resp.status_code = 503
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = jsonify(body)
    resp.status_code = 503 if status == UNHEALTHY else 200
    resp.headers["Cache-Control"] = str(current_app.config["HEALTH_CACHE_CONTROL"])
    return resp


@health_bp.route("/readyz", methods=["GET"])
def readyz():
    check = check_database(db.SessionLocal)
    ready = check.status == HEALTHY
    resp = jsonify({"ready": ready, "database": check.as_dict()})
    resp.status_code = 200 if ready else 503
    resp.headers["Cache-Control"] = "no-store"
    return resp
