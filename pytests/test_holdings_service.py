from __future__ import annotations

from datetime import timedelta

import api.services.holdings_service as holdings_service
from api.services.snapshot_store import append_snapshot
from models.holdings_snapshots import ORIGIN_FILING
from pytests.common import T0, seed_entity, seed_price, seed_snapshots


def test_append_between_reads_keeps_btc_and_delta_paired(test_db, monkeypatch):
    e = seed_entity(test_db.session)
    seed_snapshots(test_db.session, e.id, [100.0, 150.0])
    seed_price(test_db.session, 50000.0)

    real_latest_state = holdings_service.latest_state

    def _latest_state_then_append(session, **kwargs):
        rows = real_latest_state(session, **kwargs)
        writer = test_db.session_factory()
        try:
            append_snapshot(
                writer,
                entity_id=e.id,
                btc=400.0,
                origin=ORIGIN_FILING,
                created_at=T0 + timedelta(days=1),
            )
            writer.commit()
        finally:
            writer.close()
        return rows

    monkeypatch.setattr(holdings_service, "latest_state", _latest_state_then_append)

    reader = test_db.session_factory()
    try:
        data = holdings_service.build_holdings(reader)
    finally:
        reader.close()

    [rec] = data.holdings
    assert rec.btc_holdings == 400.0
    assert rec.delta_btc == 400.0 - 150.0
    assert rec.usd_value == 400.0 * 50000.0
    assert data.summary.total_btc == 400.0


def test_holding_dropped_when_newer_snapshot_is_zero(test_db, monkeypatch):
    keep = seed_entity(test_db.session)
    gone = seed_entity(
        test_db.session, ticker="SOLD", exchange_code="SOLD", listing_venue="NASDAQ",
        legal_name="Sold Corp", region="US",
    )
    seed_snapshots(test_db.session, keep.id, [10.0])
    seed_snapshots(test_db.session, gone.id, [20.0])
    seed_price(test_db.session, 1000.0)

    real_latest_state = holdings_service.latest_state

    def _latest_state_then_sell(session, **kwargs):
        rows = real_latest_state(session, **kwargs)
        writer = test_db.session_factory()
        try:
            append_snapshot(
                writer,
                entity_id=gone.id,
                btc=0.0,
                origin=ORIGIN_FILING,
                created_at=T0 + timedelta(days=1),
            )
            writer.commit()
        finally:
            writer.close()
        return rows

    monkeypatch.setattr(holdings_service, "latest_state", _latest_state_then_sell)

    data = holdings_service.build_holdings(test_db.session)

    assert [r.id for r in data.holdings] == [keep.id]
    assert data.summary.total_companies == 1
    assert data.summary.total_btc == 10.0
