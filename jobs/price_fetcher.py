"""Append the current BTC/USD rate to the price store."""

from __future__ import annotations

import argparse
from typing import Any

import requests
from sqlalchemy.orm import Session as SASession

from api.errors import UpstreamFailureError
from api.services.price_reference import record_price
from db import Base, SessionLocal, engine
from logging_utils import get_logger
from models.price_snapshots import PriceSnapshot
from settings import SETTINGS

logger = get_logger(__name__)


def fetch_btc_usd(
    url: str | None = None,
    *,
    session: requests.Session | None = None,
    timeout_s: float | None = None,
) -> float:
    """Fetch the rate from a simple-price style endpoint: {"bitcoin": {"usd": 65000.0}}.

    A missing or non-positive rate is an upstream failure, never stored as 0.
    """
    url = url or str(SETTINGS["PRICE_API_URL"])
    sess = session or requests.Session()
    try:
        resp = sess.get(
            url,
            headers={"User-Agent": str(SETTINGS["USER_AGENT"]), "Accept": "application/json"},
            timeout=timeout_s or float(SETTINGS["HTTP_TIMEOUT_SECONDS"]),
        )
        resp.raise_for_status()
        payload: Any = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise UpstreamFailureError(f"price fetch failed: {e}") from e

    rate = None
    if isinstance(payload, dict) and isinstance(payload.get("bitcoin"), dict):
        rate = payload["bitcoin"].get("usd")

    try:
        rate = float(rate)
    except (TypeError, ValueError):
        rate = None

    if not rate or rate <= 0:
        raise UpstreamFailureError("price provider returned no BTC/USD rate")
    return rate


def refresh_price(session: SASession, *, url: str | None = None) -> PriceSnapshot:
    rate = fetch_btc_usd(url)
    snap = record_price(session, btc_usd=rate, source="coingecko")
    session.commit()
    logger.info("price snapshot recorded | btc_usd=%s id=%s", snap.btc_usd, snap.id)
    return snap


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Fetch and store the current BTC/USD rate")
    p.add_argument("--url", default=None, help="Price endpoint URL")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as s:
        refresh_price(s, url=args.url)


if __name__ == "__main__":
    main()
