"""Discover treasury-disclosure candidates on exchange filings indexes.

Per entity: search the venue's index, keep document rows whose title
mentions a treasury keyword, insert the ones not already recorded for that
entity. Re-running against unchanged upstream results inserts nothing.
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as SASession

from api.errors import UpstreamFailureError
from api.services.entity_registry import get_by_ticker, list_entities
from api.services.monitoring import Monitor, monitor as default_monitor
from db import Base, SessionLocal, engine
from logging_utils import get_logger
from models.entities import Entity
from models.filing_candidates import DETECTION_TITLE, FilingCandidate
from settings import SETTINGS
from support.source_ingest_base import IngestRunResult, SourceIngestBase, run_isolated
from utils import exchange_client
from utils.time_utils import utcnow
from utils.venues import get_venue, parse_venue_date

logger = get_logger(__name__)


TREASURY_KEYWORDS = ("bitcoin", "digital asset", "cryptocurrency", "virtual asset")

DOCUMENT_EXTENSIONS = (".pdf", ".htm", ".html")


@dataclass(frozen=True)
class DocumentLink:
    url: str
    title: str
    disclosed_at: datetime
    # False when the date cell was unparseable and discovery time was used.
    date_parsed: bool = True


@dataclass
class DiscoveryResult:
    entity_id: int
    ticker: str
    found: int = 0
    matched: int = 0
    inserted: int = 0
    skipped: int = 0
    error: str | None = None
    inserted_urls: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "ticker": self.ticker,
            "found": self.found,
            "matched": self.matched,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "error": self.error,
        }


def fetch_search_page(url: str, *, max_wait_seconds: float | None = None) -> str:
    return exchange_client.fetch(url, max_wait_seconds=max_wait_seconds).text()


def _is_document_href(href: str) -> bool:
    path = urlparse(href).path.lower()
    return path.endswith(DOCUMENT_EXTENSIONS)


def parse_search_results(
    html: str, *, venue_code: str, discovered_at: datetime | None = None
) -> List[DocumentLink]:
    """Extract document rows from a filings-index result page.

    A row counts when it holds a link to a document. The title is the link
    text, the date comes from the row's first cell; unparseable dates fall
    back to `discovered_at`.
    """
    venue = get_venue(venue_code)
    fallback = discovered_at or utcnow()
    origin = (venue.index_origin or "").rstrip("/") + "/"

    soup = BeautifulSoup(html or "", "html.parser")
    links: List[DocumentLink] = []
    seen: set[str] = set()

    for row in soup.find_all("tr"):
        anchor = next(
            (a for a in row.find_all("a", href=True) if _is_document_href(a["href"])),
            None,
        )
        if anchor is None:
            continue

        url = urljoin(origin, anchor["href"].strip())
        if url in seen:
            continue
        seen.add(url)

        title = anchor.get_text(" ", strip=True) or "Untitled Document"

        cells = row.find_all("td")
        date_text = cells[0].get_text(" ", strip=True) if cells else ""
        parsed = parse_venue_date(date_text, venue.code)

        links.append(
            DocumentLink(
                url=url,
                title=title,
                disclosed_at=parsed or fallback,
                date_parsed=parsed is not None,
            )
        )

    return links


def matches_treasury_keywords(title: str) -> bool:
    t = (title or "").lower()
    return any(k in t for k in TREASURY_KEYWORDS)


def discover_for_entity(
    session: SASession,
    entity: Entity,
    *,
    now: datetime | None = None,
    max_wait_seconds: float | None = None,
) -> DiscoveryResult:
    """Run one scan for one entity and commit the new candidates.

    Raises UpstreamFailureError when the venue has no searchable index or the
    search request fails. With `max_wait_seconds` set, a spent outbound budget
    raises OutboundThrottledError instead of waiting.
    """
    venue = get_venue(entity.listing_venue)
    if not venue.supports_discovery:
        raise UpstreamFailureError(f"discovery not supported for venue {venue.code}")

    discovered_at = now or utcnow()
    url = venue.search_url(entity.exchange_code)
    html = fetch_search_page(url, max_wait_seconds=max_wait_seconds)

    links = parse_search_results(html, venue_code=venue.code, discovered_at=discovered_at)
    matched = [l for l in links if matches_treasury_keywords(l.title)]

    result = DiscoveryResult(
        entity_id=entity.id, ticker=entity.ticker, found=len(links), matched=len(matched)
    )

    for link in matched:
        existing = (
            session.query(FilingCandidate.id)
            .filter_by(entity_id=entity.id, url=link.url)
            .first()
        )
        if existing is not None:
            result.skipped += 1
            continue

        session.add(
            FilingCandidate(
                entity_id=entity.id,
                disclosed_at=link.disclosed_at,
                url=link.url,
                source=venue.source_tag or venue.code,
                title=link.title,
                detection_method=DETECTION_TITLE,
                verified=False,
                btc=0.0,
            )
        )
        # Commit per candidate so a unique-constraint race only loses that row.
        try:
            session.commit()
        except IntegrityError:
            # A concurrent scan inserted the same (entity, url) first.
            session.rollback()
            result.skipped += 1
            continue

        result.inserted += 1
        result.inserted_urls.append(link.url)

    logger.info(
        "discovery complete | ticker=%s found=%s matched=%s inserted=%s skipped=%s",
        entity.ticker,
        result.found,
        result.matched,
        result.inserted,
        result.skipped,
    )
    return result


class FilingDiscoveryJob(SourceIngestBase):
    """Scan every entity on a searchable venue; failures are isolated per entity."""

    source_name = "filing_discovery"

    def __init__(
        self,
        *,
        session_factory: Any = None,
        tickers: List[str] | None = None,
        max_workers: int | None = None,
        monitor: Monitor | None = None,
    ) -> None:
        super().__init__(session_factory=session_factory)
        self.tickers = tickers
        self.max_workers = int(max_workers or SETTINGS["DISCOVERY_WORKERS"])
        self.monitor = monitor or default_monitor
        self.results: List[DiscoveryResult] = []

    def _select_entity_ids(self) -> List[int]:
        with self.session_factory() as s:
            if self.tickers:
                ids = []
                for t in self.tickers:
                    e = get_by_ticker(s, t)
                    if e is None:
                        logger.warning("discovery: unknown ticker | ticker=%s", t)
                        continue
                    ids.append(e.id)
                return ids
            return [
                e.id
                for e in list_entities(s)
                if get_venue(e.listing_venue).supports_discovery
            ]

    def _scan_one(self, entity_id: int) -> DiscoveryResult:
        start = time.perf_counter()
        with self.session_factory() as s:
            entity = s.get(Entity, entity_id)
            result = discover_for_entity(s, entity)
        self.monitor.track_performance(
            "discovery.entity",
            (time.perf_counter() - start) * 1000.0,
            {"ticker": result.ticker, "inserted": result.inserted},
        )
        return result

    def run(self) -> IngestRunResult:
        entity_ids = self._select_entity_ids()
        outcomes = run_isolated(entity_ids, self._scan_one, max_workers=self.max_workers)

        results: List[DiscoveryResult] = []
        errors: List[str] = []
        for outcome in outcomes:
            if outcome.ok:
                results.append(outcome.value)
                continue
            msg = str(outcome.error) or type(outcome.error).__name__
            logger.warning(
                "discovery failed | entity_id=%s err=%s", outcome.item, msg
            )
            self.monitor.log_error(
                outcome.error, {"operation": "discovery", "entity_id": outcome.item}
            )
            results.append(DiscoveryResult(entity_id=outcome.item, ticker="", error=msg))
            errors.append(f"entity_id={outcome.item}: {msg}")

        self.results = results
        return IngestRunResult(
            processed=len(entity_ids),
            inserted=sum(r.inserted for r in results),
            failed=len(errors),
            errors=tuple(errors),
        )


def run_scan(
    *,
    session_factory: Callable[[], SASession] | None = None,
    tickers: List[str] | None = None,
    max_workers: int | None = None,
) -> IngestRunResult:
    return FilingDiscoveryJob(
        session_factory=session_factory, tickers=tickers, max_workers=max_workers
    ).run()


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Scan exchange filings indexes for treasury-disclosure candidates"
    )
    p.add_argument("--ticker", action="append", help="Limit to ticker(s); repeatable")
    p.add_argument("--workers", type=int, default=None, help="Concurrent entity scans")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    Base.metadata.create_all(bind=engine)

    summary = run_scan(
        session_factory=SessionLocal, tickers=args.ticker, max_workers=args.workers
    )
    logger.info(
        "filing_discovery complete | processed=%s inserted=%s failed=%s",
        summary.processed,
        summary.inserted,
        summary.failed,
    )


if __name__ == "__main__":
    main()
