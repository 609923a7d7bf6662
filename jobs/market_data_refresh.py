"""Refresh market capitalization and shares outstanding for every entity.

The quote provider is opaque: a URL template returning
{"marketCap": ..., "sharesOutstanding": ...} for a ticker. Each entity is
refreshed independently; one failing quote never blocks the rest.
"""

from __future__ import annotations

import argparse
import os
from typing import Any, Dict, List

import requests

from api.errors import NotConfiguredError, UpstreamFailureError
from api.services.entity_registry import list_entities, update_market_data
from api.services.monitoring import Monitor, monitor as default_monitor
from db import Base, SessionLocal, engine
from logging_utils import get_logger
from models.entities import Entity
from settings import SETTINGS
from support.source_ingest_base import IngestRunResult, SourceIngestBase, run_isolated

logger = get_logger(__name__)


def fetch_quote(ticker: str, *, url_template: str | None) -> Dict[str, float | None]:
    if not url_template:
        raise NotConfiguredError("QUOTE_API_URL is not configured")

    url = url_template.format(ticker=ticker)
    try:
        resp = requests.get(
            url,
            headers={"User-Agent": str(SETTINGS["USER_AGENT"]), "Accept": "application/json"},
            timeout=float(SETTINGS["HTTP_TIMEOUT_SECONDS"]),
        )
        resp.raise_for_status()
        payload: Any = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise UpstreamFailureError(f"quote fetch failed ticker={ticker}: {e}") from e

    if not isinstance(payload, dict):
        raise UpstreamFailureError(f"unexpected quote payload ticker={ticker}")

    def _num(key: str) -> float | None:
        v = payload.get(key)
        return float(v) if isinstance(v, (int, float)) and v > 0 else None

    return {"market_cap": _num("marketCap"), "shares_outstanding": _num("sharesOutstanding")}


class MarketDataRefreshJob(SourceIngestBase):
    source_name = "market_data"

    def __init__(
        self,
        *,
        session_factory: Any = None,
        url_template: str | None = None,
        max_workers: int | None = None,
        monitor: Monitor | None = None,
    ) -> None:
        super().__init__(session_factory=session_factory)
        self.url_template = url_template
        self.max_workers = int(max_workers or SETTINGS["MARKET_DATA_WORKERS"])
        self.monitor = monitor or default_monitor

    def _refresh_one(self, entity_id: int) -> bool:
        with self.session_factory() as s:
            entity = s.get(Entity, entity_id)
            quote = fetch_quote(entity.ticker, url_template=self.url_template)
            update_market_data(
                s,
                entity,
                market_cap=quote["market_cap"],
                shares_outstanding=quote["shares_outstanding"],
            )
            s.commit()
        return True

    def run(self) -> IngestRunResult:
        if not self.url_template:
            raise NotConfiguredError("QUOTE_API_URL is not configured")

        with self.session_factory() as s:
            entity_ids = [e.id for e in list_entities(s)]

        with self.monitor.track("market_data.refresh", entities=len(entity_ids)):
            outcomes = run_isolated(
                entity_ids, self._refresh_one, max_workers=self.max_workers
            )

        errors: List[str] = []
        for outcome in outcomes:
            if outcome.ok:
                continue
            msg = str(outcome.error) or type(outcome.error).__name__
            logger.warning("market data refresh failed | entity_id=%s err=%s", outcome.item, msg)
            self.monitor.log_error(
                outcome.error, {"operation": "market_data", "entity_id": outcome.item}
            )
            errors.append(f"entity_id={outcome.item}: {msg}")

        result = IngestRunResult(
            processed=len(entity_ids),
            inserted=len(entity_ids) - len(errors),
            failed=len(errors),
            errors=tuple(errors),
        )
        logger.info(
            "market data refresh complete | processed=%s updated=%s failed=%s",
            result.processed,
            result.inserted,
            result.failed,
        )
        return result


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Refresh market data for all entities")
    p.add_argument(
        "--url-template",
        default=os.getenv("QUOTE_API_URL"),
        help="Quote endpoint with a {ticker} placeholder",
    )
    p.add_argument("--workers", type=int, default=None)
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    Base.metadata.create_all(bind=engine)
    MarketDataRefreshJob(
        session_factory=SessionLocal,
        url_template=args.url_template,
        max_workers=args.workers,
    ).run()


if __name__ == "__main__":
    main()
