from __future__ import annotations

from datetime import datetime, timezone

import pytest

from utils.venues import get_venue, normalize_exchange_code, parse_venue_date


@pytest.mark.parametrize(
    "ticker,venue,expected",
    [
        ("1357.HK", "HKEX", "01357"),
        ("1357", "HKEX", "01357"),
        ("01357.hk", "HKEX", "01357"),
        ("300058.SZ", "SZSE", "300058"),
        ("58.sz", "SZSE", "000058"),
        ("3659.T", "TSE", "3659"),
        (" ncty ", "NASDAQ", "NCTY"),
    ],
)
def test_normalize_exchange_code(ticker, venue, expected):
    assert normalize_exchange_code(ticker, venue) == expected


def test_normalize_exchange_code_rejects_empty_and_overlong():
    with pytest.raises(ValueError):
        normalize_exchange_code(".HK", "HKEX")
    with pytest.raises(ValueError):
        normalize_exchange_code("123456", "HKEX")


def test_get_venue_is_case_insensitive_and_rejects_unknown():
    assert get_venue("hkex").code == "HKEX"
    with pytest.raises(ValueError):
        get_venue("LSE")


def test_only_hkex_supports_discovery():
    assert get_venue("HKEX").supports_discovery is True
    assert get_venue("NASDAQ").supports_discovery is False


def test_parse_hkex_date_with_time_converts_to_utc():
    parsed = parse_venue_date("07/04/2021 18:30", "HKEX")
    assert parsed == datetime(2021, 4, 7, 10, 30, tzinfo=timezone.utc)


def test_parse_hkex_date_only_and_embedded_text():
    assert parse_venue_date("Release Time: 17/03/2021", "HKEX") == datetime(
        2021, 3, 16, 16, 0, tzinfo=timezone.utc
    )
    assert parse_venue_date("17 Mar 2021", "HKEX") is not None
    assert parse_venue_date("2021-03-17", "HKEX") is not None


def test_parse_unparseable_date_returns_none():
    assert parse_venue_date("", "HKEX") is None
    assert parse_venue_date("yesterday", "HKEX") is None
    assert parse_venue_date("45/45/2021", "HKEX") is None
