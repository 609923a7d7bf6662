"""Assemble the public holdings feed.

The price is read once, before the projection, and every row in the
response is valued against that one observation.
"""

from __future__ import annotations

from dataclasses import replace
from typing import List, Tuple

from sqlalchemy.orm import Session

from api.schemas.api_responses import HoldingRecord, HoldingsData, HoldingsSummary
from api.services.price_reference import latest_price
from api.services.snapshot_store import (
    LatestDelta,
    LatestHolding,
    latest_state,
    latest_with_deltas,
)
from utils.time_utils import ensure_utc


def _with_snapshot(h: LatestHolding, cur: LatestDelta) -> LatestHolding:
    return replace(
        h,
        btc=cur.btc,
        cost_basis_usd=cur.cost_basis_usd,
        last_disclosed=cur.last_disclosed,
        source_url=cur.source_url,
        snapshot_id=cur.snapshot_id,
        snapshot_created_at=cur.snapshot_created_at,
        updated_at=max(h.updated_at, cur.snapshot_created_at),
    )


def _to_record(h: LatestHolding, *, rate: float, delta: float | None) -> HoldingRecord:
    return HoldingRecord(
        id=h.entity_id,
        company=h.legal_name,
        ticker=h.ticker,
        exchange=h.listing_venue,
        headquarters=h.hq,
        region=h.region,
        btc_holdings=h.btc,
        usd_value=h.btc * rate,
        delta_btc=delta,
        cost_basis_usd=h.cost_basis_usd,
        last_disclosed=h.last_disclosed,
        source=h.source_url,
        verified=h.verified,
        market_cap=h.market_cap,
        shares_outstanding=h.shares_outstanding,
        updated_at=h.updated_at,
    )


def build_holdings(session: Session, *, region: str | None = None) -> HoldingsData:
    """Price, project, filter, delta, value, summarize.

    Raises NoPriceDataError when no price has ever been recorded; the caller
    gets an error rather than holdings valued at zero.
    """
    price = latest_price(session)
    rate = float(price.btc_usd)

    projected = [h for h in latest_state(session, region=region) if h.btc > 0]
    latest = latest_with_deltas(session, [h.entity_id for h in projected])

    rows: List[Tuple[LatestHolding, float | None]] = []
    for h in projected:
        cur = latest[h.entity_id]
        if cur.snapshot_id != h.snapshot_id:
            # A snapshot landed after the projection was read.
            h = _with_snapshot(h, cur)
        if h.btc > 0:
            rows.append((h, cur.delta))
    rows.sort(key=lambda pair: (-pair[0].btc, pair[0].entity_id))

    records: List[HoldingRecord] = [
        _to_record(h, rate=rate, delta=delta) for h, delta in rows
    ]

    total_btc = sum(r.btc_holdings for r in records)
    summary = HoldingsSummary(
        total_btc=total_btc,
        total_usd=total_btc * rate,
        verified_count=sum(1 for r in records if r.verified),
        total_companies=len(records),
        priced_at=ensure_utc(price.created_at),
        btc_usd_rate=rate,
    )
    return HoldingsData(holdings=records, summary=summary)
