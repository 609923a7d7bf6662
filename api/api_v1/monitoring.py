from __future__ import annotations

from flask import Blueprint, jsonify, request

from api.schemas.api_responses import ok
from api.services.monitoring import monitor

monitoring_v1_bp = Blueprint("monitoring_v1", __name__, url_prefix="/monitoring")


@monitoring_v1_bp.route("/stats", methods=["GET"])
def get_stats():
    """Derived performance statistics plus the most recent buffer entries.

    Query params:
    - limit: entries per list (default 20, max 100)
    """
    try:
        limit = int((request.args.get("limit") or "").strip() or 20)
    except ValueError:
        limit = 20
    limit = max(1, min(limit, 100))

    data = {
        "performance": monitor.performance_stats(),
        "errorRate": monitor.error_rate(),
        "alerts": monitor.check_alerts(),
        "recentMetrics": [m.as_dict() for m in monitor.recent_metrics(limit)],
        "recentErrors": [e.as_dict() for e in monitor.recent_errors(limit)],
        "system": monitor.system_snapshot(),
    }
    resp = jsonify(ok(data))
    resp.headers["Cache-Control"] = "private, no-cache, must-revalidate"
    return resp
