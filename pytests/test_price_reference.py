from __future__ import annotations

from datetime import timedelta

import pytest

from api.errors import NoPriceDataError, RequestValidationError
from api.services.price_reference import latest_price, record_price
from models.price_snapshots import PriceSnapshot
from pytests.common import T0, add_dicts, create_empty_sqlite_db


def test_latest_price_raises_when_empty(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "p.sqlite")
    with pytest.raises(NoPriceDataError):
        latest_price(session)


def test_latest_price_returns_most_recent(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "p.sqlite")
    add_dicts(
        session,
        PriceSnapshot,
        [
            {"btc_usd": 40000.0, "source": "test", "created_at": T0},
            {"btc_usd": 65000.0, "source": "test", "created_at": T0 + timedelta(minutes=5)},
            {"btc_usd": 50000.0, "source": "test", "created_at": T0 - timedelta(days=1)},
        ],
    )

    assert latest_price(session).btc_usd == 65000.0


def test_record_price_rejects_non_positive(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "p.sqlite")
    with pytest.raises(RequestValidationError):
        record_price(session, btc_usd=0)
    snap = record_price(session, btc_usd=61000.5, source="test")
    session.commit()
    assert snap.id is not None
    assert latest_price(session).btc_usd == 61000.5
