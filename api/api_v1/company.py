from __future__ import annotations

from flask import Blueprint, jsonify

import db
from api.api_v1.guards import admit
from api.errors import NotFoundError
from api.schemas.api_responses import ok
from api.services.entity_registry import get_by_ticker
from api.services.snapshot_store import compute_deltas, snapshot_history
from models.filing_candidates import FilingCandidate
from utils.time_utils import isoformat_utc

company_v1_bp = Blueprint("company_v1", __name__)


@company_v1_bp.route("/company/<ticker>", methods=["GET"])
def get_company(ticker: str):
    """One entity: current holdings, delta, snapshot history and filing candidates."""
    admit()

    session = db.SessionLocal()
    try:
        entity = get_by_ticker(session, ticker)
        if entity is None:
            raise NotFoundError(f"Unknown ticker: {ticker}")

        history = snapshot_history(session, entity.id)
        delta = compute_deltas(session, [entity.id]).get(entity.id)
        candidates = (
            session.query(FilingCandidate)
            .filter(FilingCandidate.entity_id == entity.id)
            .order_by(FilingCandidate.disclosed_at.desc(), FilingCandidate.id.desc())
            .all()
        )

        latest = history[0].snapshot if history else None
        data = {
            "id": entity.id,
            "company": entity.legal_name,
            "ticker": entity.ticker,
            "exchange": entity.listing_venue,
            "headquarters": entity.hq,
            "region": entity.region,
            "verified": bool(entity.verified),
            "marketCap": entity.market_cap,
            "sharesOutstanding": entity.shares_outstanding,
            "btcHoldings": float(latest.btc) if latest is not None else None,
            "deltaBtc": delta,
            "history": [
                {
                    "btc": float(h.snapshot.btc),
                    "change": h.change,
                    "costBasisUsd": h.snapshot.cost_basis_usd,
                    "lastDisclosed": h.snapshot.last_disclosed.isoformat()
                    if h.snapshot.last_disclosed
                    else None,
                    "source": h.snapshot.source_url,
                    "origin": h.snapshot.origin,
                    "createdAt": isoformat_utc(h.snapshot.created_at),
                }
                for h in history
            ],
            "filings": [
                {
                    "id": c.id,
                    "title": c.title,
                    "url": c.url,
                    "source": c.source,
                    "disclosedAt": isoformat_utc(c.disclosed_at),
                    "detectionMethod": c.detection_method,
                    "verified": bool(c.verified),
                    "btc": c.btc,
                }
                for c in candidates
            ],
        }
    finally:
        session.close()

    return jsonify(ok(data))
