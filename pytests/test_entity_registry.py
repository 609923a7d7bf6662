from __future__ import annotations

import pytest

from api.services.entity_registry import (
    get_by_ticker,
    list_entities,
    lookup_or_create,
    normalize_region,
    normalize_ticker,
    update_market_data,
)
from models.entities import Entity
from pytests.common import create_empty_sqlite_db


def test_normalize_region_aliases():
    assert normalize_region("hong kong") == "HK"
    assert normalize_region(" China ") == "CN"
    assert normalize_region("hk") == "HK"
    assert normalize_region("") is None
    assert normalize_region(None) is None


def test_normalize_ticker_uses_venue_width():
    assert normalize_ticker("1357.HK", "hkex") == "01357"


def test_lookup_or_create_dedups_ticker_spellings(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "reg.sqlite")

    e1, created1 = lookup_or_create(
        session, ticker="1357.HK", listing_venue="HKEX", legal_name="Meitu", region="Hong Kong"
    )
    session.commit()
    e2, created2 = lookup_or_create(session, ticker="01357", listing_venue="hkex")
    session.commit()

    assert created1 is True
    assert created2 is False
    assert e1.id == e2.id
    assert e1.exchange_code == "01357"
    assert e1.region == "HK"
    assert session.query(Entity).count() == 1


def test_lookup_or_create_unknown_venue_raises(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "reg.sqlite")
    with pytest.raises(ValueError):
        lookup_or_create(session, ticker="ABC", listing_venue="LSE")


def test_get_by_ticker_matches_any_spelling(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "reg.sqlite")
    e, _ = lookup_or_create(session, ticker="1357.HK", listing_venue="HKEX")
    session.commit()

    assert get_by_ticker(session, "1357.hk").id == e.id
    assert get_by_ticker(session, "1357", listing_venue="HKEX").id == e.id
    assert get_by_ticker(session, "NOPE") is None
    assert get_by_ticker(session, "") is None


def test_list_entities_filters_by_region(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "reg.sqlite")
    lookup_or_create(session, ticker="1357.HK", listing_venue="HKEX", region="HK")
    lookup_or_create(session, ticker="3659.T", listing_venue="TSE", region="Japan")
    session.commit()

    assert [e.ticker for e in list_entities(session, region="hk")] == ["1357.HK"]
    assert [e.ticker for e in list_entities(session, region="jp")] == ["3659.T"]
    assert len(list_entities(session)) == 2


def test_update_market_data_keeps_missing_fields(tmp_path):
    session, _ = create_empty_sqlite_db(tmp_path / "reg.sqlite")
    e, _ = lookup_or_create(session, ticker="1357.HK", listing_venue="HKEX")
    update_market_data(session, e, market_cap=1.5e9, shares_outstanding=None)
    session.commit()

    assert e.market_cap == 1.5e9
    assert e.shares_outstanding is None
