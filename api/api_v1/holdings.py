from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

import db
from api.api_v1.guards import admit
from api.schemas.api_responses import ok
from api.services.holdings_service import build_holdings

holdings_v1_bp = Blueprint("holdings_v1", __name__)


@holdings_v1_bp.route("/holdings", methods=["GET"])
def get_holdings():
    """Public holdings feed.

    Query params:
    - region: optional region code (case-insensitive, e.g. "hk", "Hong Kong")
    """
    admit()

    region = (request.args.get("region") or "").strip() or None

    session = db.SessionLocal()
    try:
        data = build_holdings(session, region=region)
    finally:
        session.close()

    resp = jsonify(ok(data))
    resp.headers["Cache-Control"] = str(current_app.config["HOLDINGS_CACHE_CONTROL"])
    resp.headers["Access-Control-Allow-Origin"] = "*"
    return resp
