"""Shared helpers for tests.

Intended usage:
- spin up a temporary SQLite database
- create all SQLAlchemy tables
- point the app's `db` module at it
- provide convenience helpers for inserting dict-like rows

These utilities keep tests small and consistent.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from models import Base
from models.entities import Entity
from models.holdings_snapshots import ORIGIN_MANUAL, HoldingsSnapshot
from models.price_snapshots import PriceSnapshot

__all__ = [
    "make_sqlite_engine",
    "create_empty_sqlite_db",
    "patch_app_db",
    "add_dicts",
    "seed_entity",
    "seed_snapshots",
    "seed_price",
    "T0",
]

# Fixed reference time for snapshot ordering.
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_sqlite_engine(db_path: Path | str) -> Engine:
    """Create a SQLite engine suitable for tests (shared across threads)."""

    if isinstance(db_path, Path):
        db_path = str(db_path)
    return create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )


def create_empty_sqlite_db(db_path: Path) -> tuple[Session, Engine]:
    """Create an empty SQLite DB file and initialize all models.

    Returns (session, engine).
    """

    engine = make_sqlite_engine(db_path)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    return SessionLocal(), engine


def patch_app_db(monkeypatch, engine: Engine) -> sessionmaker:
    """Point `db.engine` / `db.SessionLocal` at a test engine. Returns the sessionmaker."""

    import db

    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(db, "SessionLocal", session_factory)
    return session_factory


def add_dicts(session: Session, model, rows: Iterable[dict[str, Any]]) -> None:
    """Bulk insert a list of dicts into a SQLAlchemy model table."""

    objs = [model(**row) for row in rows]
    session.add_all(objs)
    session.commit()


def seed_entity(
    session: Session,
    *,
    ticker: str = "1357.HK",
    exchange_code: str = "01357",
    listing_venue: str = "HKEX",
    legal_name: str = "Meitu, Inc.",
    region: str | None = "HK",
    **extra: Any,
) -> Entity:
    e = Entity(
        legal_name=legal_name,
        ticker=ticker,
        exchange_code=exchange_code,
        listing_venue=listing_venue,
        region=region,
        **extra,
    )
    session.add(e)
    session.commit()
    return e


def seed_snapshots(session: Session, entity_id: int, btcs: Iterable[float]) -> list[HoldingsSnapshot]:
    """One snapshot per value, one hour apart starting at T0 (oldest first)."""

    snaps = []
    for i, btc in enumerate(btcs):
        snaps.append(
            HoldingsSnapshot(
                entity_id=entity_id,
                btc=btc,
                origin=ORIGIN_MANUAL,
                last_disclosed=date(2024, 1, 1) + timedelta(days=i),
                source_url=f"https://example.test/{entity_id}/{i}",
                created_at=T0 + timedelta(hours=i),
            )
        )
    session.add_all(snaps)
    session.commit()
    return snaps


def seed_price(session: Session, btc_usd: float, *, at: datetime | None = None) -> PriceSnapshot:
    p = PriceSnapshot(btc_usd=btc_usd, source="test", created_at=at or T0)
    session.add(p)
    session.commit()
    return p
