"""Load a JSON export of treasury holdings into the registry and snapshot store.

Input is a list of objects:

    [{"ticker": "1357.HK", "listingVenue": "HKEX", "legalName": "Meitu, Inc.",
      "hq": "Hong Kong", "region": "HK", "btc": 940.9, "costBasisUsd": 49500000,
      "lastDisclosed": "2021-04-07", "sourceUrl": "https://..."}]

Re-loading the same export appends nothing: a row is skipped when the
entity's latest snapshot already carries the same btc, last-disclosed date
and source url.
"""

from __future__ import annotations

import argparse
import json
from datetime import date
from pathlib import Path
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session as SASession

from api.services.entity_registry import lookup_or_create
from api.services.snapshot_store import append_snapshot
from db import Base, SessionLocal, engine
from logging_utils import get_logger
from models.holdings_snapshots import ORIGIN_BULK_EXPORT, HoldingsSnapshot
from support.source_ingest_base import IngestRunResult, SourceIngestBase

logger = get_logger(__name__)


class ExportRow(BaseModel):
    ticker: str
    listing_venue: str
    legal_name: Optional[str] = None
    hq: Optional[str] = None
    region: Optional[str] = None
    btc: float = Field(ge=0)
    cost_basis_usd: Optional[float] = None
    last_disclosed: Optional[date] = None
    source_url: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _latest_snapshot(session: SASession, entity_id: int) -> HoldingsSnapshot | None:
    return (
        session.query(HoldingsSnapshot)
        .filter(HoldingsSnapshot.entity_id == entity_id)
        .order_by(HoldingsSnapshot.created_at.desc(), HoldingsSnapshot.id.desc())
        .first()
    )


def _same_observation(snap: HoldingsSnapshot | None, row: ExportRow) -> bool:
    if snap is None:
        return False
    return (
        float(snap.btc) == float(row.btc)
        and snap.last_disclosed == row.last_disclosed
        and (snap.source_url or None) == (row.source_url or None)
    )


def load_row(session: SASession, row: ExportRow) -> bool:
    """Apply one export row. Returns True when a snapshot was appended."""
    entity, _created = lookup_or_create(
        session,
        ticker=row.ticker,
        listing_venue=row.listing_venue,
        legal_name=row.legal_name,
        hq=row.hq,
        region=row.region,
    )

    if _same_observation(_latest_snapshot(session, entity.id), row):
        return False

    append_snapshot(
        session,
        entity_id=entity.id,
        btc=row.btc,
        origin=ORIGIN_BULK_EXPORT,
        cost_basis_usd=row.cost_basis_usd,
        last_disclosed=row.last_disclosed,
        source_url=row.source_url,
    )
    return True


class BulkExportLoader(SourceIngestBase):
    source_name = "bulk_export"

    def __init__(self, items: Iterable[Any], *, session_factory: Any = None) -> None:
        super().__init__(session_factory=session_factory)
        self.items = list(items)

    def run(self) -> IngestRunResult:
        inserted = 0
        errors: List[str] = []

        with self.session_factory() as s:
            for idx, raw in enumerate(self.items):
                try:
                    row = ExportRow.model_validate(raw)
                except ValidationError as e:
                    logger.warning("bulk export: invalid row | index=%s err=%s", idx, e)
                    errors.append(f"row={idx}: invalid")
                    continue

                try:
                    if load_row(s, row):
                        inserted += 1
                    s.commit()
                except ValueError as e:
                    # Unknown venue or malformed ticker.
                    s.rollback()
                    logger.warning(
                        "bulk export: row rejected | index=%s ticker=%s err=%s",
                        idx,
                        row.ticker,
                        e,
                    )
                    errors.append(f"row={idx}: {e}")

        result = IngestRunResult(
            processed=len(self.items),
            inserted=inserted,
            failed=len(errors),
            errors=tuple(errors),
        )
        logger.info(
            "bulk export loaded | processed=%s inserted=%s failed=%s",
            result.processed,
            result.inserted,
            result.failed,
        )
        return result


def load_file(path: Path | str, *, session_factory: Any = None) -> IngestRunResult:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("companies") or data.get("data") or []
    return BulkExportLoader(data, session_factory=session_factory).run()


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Load a JSON holdings export")
    p.add_argument("path", help="Path to the JSON export")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    Base.metadata.create_all(bind=engine)
    load_file(args.path, session_factory=SessionLocal)


if __name__ == "__main__":
    main()
