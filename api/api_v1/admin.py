"""Administrative triggers. Every route checks the bearer secret before doing anything."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

import db
from api.api_v1.guards import require_admin
from api.errors import NotFoundError, RequestValidationError
from api.jobs.manager import discovery_scan_job
from api.schemas.api_responses import ok
from api.services.entity_registry import get_by_ticker
from jobs.filing_discovery import discover_for_entity
from jobs.market_data_refresh import MarketDataRefreshJob
from jobs.price_fetcher import refresh_price
from logging_utils import get_logger
from models.entities import Entity

logger = get_logger(__name__)

admin_v1_bp = Blueprint("admin_v1", __name__, url_prefix="/admin")


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@admin_v1_bp.route("/scan-filings", methods=["POST"])
def scan_filings():
    """Discovery scan for one entity.

    Body: {"ticker": "1357.HK"} or {"entityId": 1}
    """
    require_admin()

    body = _json_body()
    ticker = str(body.get("ticker") or "").strip()
    entity_id = body.get("entityId")
    if not ticker and entity_id in (None, ""):
        raise RequestValidationError("ticker or entityId is required")

    session = db.SessionLocal()
    try:
        if ticker:
            entity = get_by_ticker(session, ticker)
        else:
            try:
                entity = session.get(Entity, int(entity_id))
            except (TypeError, ValueError):
                raise RequestValidationError("entityId must be an integer")
        if entity is None:
            raise NotFoundError(f"Unknown entity: {ticker or entity_id}")

        result = discover_for_entity(
            session,
            entity,
            max_wait_seconds=float(
                current_app.config.get("INTERACTIVE_FETCH_MAX_WAIT_SECONDS", 5.0)
            ),
        )
    finally:
        session.close()

    return jsonify(ok(result.as_dict()))


@admin_v1_bp.route("/scan-all", methods=["POST"])
def scan_all():
    require_admin()

    tickers = _json_body().get("tickers")
    if tickers is not None and not (
        isinstance(tickers, list) and all(isinstance(t, str) for t in tickers)
    ):
        raise RequestValidationError("tickers must be a list of strings")

    started = discovery_scan_job.start(tickers=tickers or None)
    logger.info("admin scan-all requested | started=%s", started)
    return jsonify(ok({"started": started, "job": discovery_scan_job.get_state()})), (
        202 if started else 409
    )


@admin_v1_bp.get("/jobs")
def get_jobs():
    """Background job and sweep state."""
    require_admin()

    sweeps = current_app.extensions.get("sweeps") or {}
    data = {
        "discovery_scan": discovery_scan_job.get_state(),
        "sweeps": {name: sweep.get_state() for name, sweep in sweeps.items()},
    }
    return jsonify(ok(data))


@admin_v1_bp.route("/fetch-prices", methods=["POST"])
def fetch_prices():
    require_admin()

    session = db.SessionLocal()
    try:
        snap = refresh_price(session, url=current_app.config.get("PRICE_API_URL"))
        data = {"btcUsd": snap.btc_usd, "source": snap.source, "id": snap.id}
    finally:
        session.close()
    return jsonify(ok(data))


@admin_v1_bp.route("/update-market-data", methods=["POST"])
def update_market_data():
    require_admin()

    job = MarketDataRefreshJob(
        session_factory=db.SessionLocal,
        url_template=current_app.config.get("QUOTE_API_URL"),
    )
    summary = job.run()
    return jsonify(ok(summary.as_dict()))
