from __future__ import annotations

from datetime import timedelta

from api.services.rate_limiter import InMemoryFixedWindowLimiter, TwoTierRateLimiter
from pytests.common import T0, seed_entity, seed_price, seed_snapshots


def _seed_book(session):
    hk = seed_entity(session, region="HK", verified=True)
    jp = seed_entity(
        session, ticker="3659.T", exchange_code="3659", listing_venue="TSE",
        legal_name="Nexon", region="JP",
    )
    zero = seed_entity(
        session, ticker="ZERO", exchange_code="ZERO", listing_venue="NASDAQ",
        legal_name="Sold Out", region="US",
    )
    seed_snapshots(session, hk.id, [100.0, 150.0])
    seed_snapshots(session, jp.id, [30.0])
    seed_snapshots(session, zero.id, [5.0, 0.0])
    seed_price(session, 60000.0, at=T0)
    return hk, jp, zero


def test_holdings_envelope_valuation_and_deltas(client, test_db):
    hk, jp, _zero = _seed_book(test_db.session)

    resp = client.get("/api/v1/holdings")
    assert resp.status_code == 200

    body = resp.get_json()
    assert set(body.keys()) == {"success", "data"}
    assert body["success"] is True

    holdings = body["data"]["holdings"]
    assert [h["ticker"] for h in holdings] == ["1357.HK", "3659.T"]

    first = holdings[0]
    assert set(first.keys()) == {
        "id", "company", "ticker", "exchange", "headquarters", "region",
        "btcHoldings", "usdValue", "deltaBtc", "costBasisUsd", "lastDisclosed",
        "source", "verified", "marketCap", "sharesOutstanding", "updatedAt",
    }
    assert first["id"] == hk.id
    assert first["btcHoldings"] == 150.0
    assert first["usdValue"] == 150.0 * 60000.0
    assert first["deltaBtc"] == 50.0
    assert first["verified"] is True

    # Single snapshot: null, not zero.
    assert holdings[1]["deltaBtc"] is None

    summary = body["data"]["summary"]
    assert summary["totalBtc"] == 180.0
    assert summary["totalUsd"] == 180.0 * 60000.0
    assert summary["verifiedCount"] == 1
    assert summary["totalCompanies"] == 2
    assert summary["btcUsdRate"] == 60000.0
    assert summary["pricedAt"].startswith("2024-01-01T00:00:00")


def test_holdings_headers(client, test_db):
    _seed_book(test_db.session)
    resp = client.get("/api/v1/holdings", headers={"X-Forwarded-For": "203.0.113.9"})

    assert resp.headers["X-RateLimit-Limit"] == "60"
    assert resp.headers["X-RateLimit-Remaining"] == "59"
    assert int(resp.headers["X-RateLimit-Reset"]) > 0
    assert "s-maxage=300" in resp.headers["Cache-Control"]
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_holdings_region_filter_is_case_insensitive(client, test_db):
    _seed_book(test_db.session)

    resp = client.get("/api/v1/holdings?region=jp")
    holdings = resp.get_json()["data"]["holdings"]
    assert [h["ticker"] for h in holdings] == ["3659.T"]
    assert resp.get_json()["data"]["summary"]["totalBtc"] == 30.0

    resp = client.get("/api/v1/holdings?region=Hong%20Kong")
    assert [h["ticker"] for h in resp.get_json()["data"]["holdings"]] == ["1357.HK"]


def test_holdings_uses_latest_price_for_every_row(client, test_db):
    _seed_book(test_db.session)
    seed_price(test_db.session, 70000.0, at=T0 + timedelta(hours=1))

    data = client.get("/api/v1/holdings").get_json()["data"]
    assert data["summary"]["btcUsdRate"] == 70000.0
    assert all(h["usdValue"] == h["btcHoldings"] * 70000.0 for h in data["holdings"])


def test_missing_price_is_server_error_not_zero_valuation(client, test_db):
    e = seed_entity(test_db.session)
    seed_snapshots(test_db.session, e.id, [10.0])

    resp = client.get("/api/v1/holdings")
    assert resp.status_code == 500
    body = resp.get_json()
    assert body == {"error": "No price data available"}
    assert "X-RateLimit-Limit" in resp.headers


def test_rejected_request_gets_429_and_retry_after(app, client, test_db):
    _seed_book(test_db.session)
    app.extensions["rate_limiter"] = TwoTierRateLimiter(
        fallback=InMemoryFixedWindowLimiter(limit=2, window_seconds=60)
    )

    headers = {"X-Real-IP": "198.51.100.1"}
    assert client.get("/api/v1/holdings", headers=headers).status_code == 200
    assert client.get("/api/v1/holdings", headers=headers).status_code == 200

    resp = client.get("/api/v1/holdings", headers=headers)
    assert resp.status_code == 429
    assert resp.get_json() == {"error": "Too many requests"}
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert 0 < int(resp.headers["Retry-After"]) <= 60

    # A different client still gets through.
    other = client.get("/api/v1/holdings", headers={"X-Real-IP": "198.51.100.2"})
    assert other.status_code == 200
