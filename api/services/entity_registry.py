from __future__ import annotations

from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from logging_utils import get_logger
from models.entities import Entity
from utils.venues import VENUES, get_venue, normalize_exchange_code

logger = get_logger(__name__)


_REGION_ALIASES = {
    "HONG KONG": "HK",
    "HONGKONG": "HK",
    "CHINA": "CN",
    "MAINLAND CHINA": "CN",
    "JAPAN": "JP",
    "SINGAPORE": "SG",
    "SOUTH KOREA": "KR",
    "KOREA": "KR",
    "THAILAND": "TH",
    "UNITED STATES": "US",
    "USA": "US",
}


def normalize_region(region: str | None) -> str | None:
    """Normalize a region tag to its upper-case code ('hong kong' -> 'HK').

    Empty input means "no region".
    """
    raw = " ".join((region or "").split()).upper()
    if not raw:
        return None
    return _REGION_ALIASES.get(raw, raw)


def normalize_ticker(ticker: str, listing_venue: str) -> str:
    """Venue-normalized exchange code: "1357.HK" on HKEX -> "01357"."""
    return normalize_exchange_code(ticker, get_venue(listing_venue).code)


def get_by_exchange_code(
    session: Session, *, listing_venue: str, exchange_code: str
) -> Optional[Entity]:
    return (
        session.query(Entity)
        .filter(Entity.listing_venue == listing_venue)
        .filter(Entity.exchange_code == exchange_code)
        .first()
    )


def get_by_ticker(
    session: Session, ticker: str, *, listing_venue: str | None = None
) -> Optional[Entity]:
    """Lookup an entity by any spelling of its ticker.

    Without a venue, the display ticker is matched first, then every venue
    whose normalization accepts the input.
    """
    if listing_venue:
        venue = get_venue(listing_venue)
        return get_by_exchange_code(
            session,
            listing_venue=venue.code,
            exchange_code=normalize_exchange_code(ticker, venue.code),
        )

    raw = (ticker or "").strip().upper()
    if not raw:
        return None

    entity = session.query(Entity).filter(Entity.ticker == raw).first()
    if entity is not None:
        return entity

    for code in VENUES:
        try:
            norm = normalize_exchange_code(raw, code)
        except ValueError:
            continue
        entity = get_by_exchange_code(session, listing_venue=code, exchange_code=norm)
        if entity is not None:
            return entity
    return None


def lookup_or_create(
    session: Session,
    *,
    ticker: str,
    listing_venue: str,
    legal_name: str | None = None,
    hq: str | None = None,
    region: str | None = None,
) -> tuple[Entity, bool]:
    """Return (entity, created) for the normalized ticker.

    Never creates a second row for the same `(venue, exchange_code)`: a
    concurrent insert that wins the unique constraint is resolved to the
    existing row.
    """
    venue = get_venue(listing_venue)
    code = normalize_ticker(ticker, venue.code)

    existing = get_by_exchange_code(session, listing_venue=venue.code, exchange_code=code)
    if existing is not None:
        return existing, False

    entity = Entity(
        legal_name=(legal_name or ticker).strip(),
        ticker=ticker.strip().upper(),
        exchange_code=code,
        listing_venue=venue.code,
        hq=hq,
        region=normalize_region(region),
    )
    session.add(entity)
    try:
        session.flush()
    except IntegrityError:
        # Rolls back the caller's pending work too; callers commit per entity.
        session.rollback()
        logger.info(
            "entity insert lost race; resolving to existing | venue=%s code=%s",
            venue.code,
            code,
        )
        existing = get_by_exchange_code(
            session, listing_venue=venue.code, exchange_code=code
        )
        if existing is None:
            raise
        return existing, False

    logger.info(
        "entity created | id=%s ticker=%s venue=%s code=%s",
        entity.id,
        entity.ticker,
        venue.code,
        code,
    )
    return entity, True


def list_entities(session: Session, *, region: str | None = None) -> List[Entity]:
    """List entities, optionally restricted to one normalized region code."""
    qry = session.query(Entity)
    norm = normalize_region(region)
    if norm:
        qry = qry.filter(Entity.region == norm)
    return qry.order_by(Entity.id).all()


def update_market_data(
    session: Session,
    entity: Entity,
    *,
    market_cap: float | None,
    shares_outstanding: float | None,
) -> Entity:
    """Store refreshed market data. Reads recompute the projection, so no cache to bust."""
    if market_cap is not None:
        entity.market_cap = float(market_cap)
    if shares_outstanding is not None:
        entity.shares_outstanding = float(shares_outstanding)
    session.flush()
    return entity
