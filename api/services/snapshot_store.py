"""Append-only holdings history, latest-state projection and batched deltas."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from api.errors import RequestValidationError
from api.services.entity_registry import normalize_region
from models.entities import Entity
from models.holdings_snapshots import SNAPSHOT_ORIGINS, HoldingsSnapshot
from utils.time_utils import ensure_utc


@dataclass(frozen=True)
class LatestHolding:
    """One row of the latest-state projection (entity + its newest snapshot)."""

    entity_id: int
    legal_name: str
    ticker: str
    listing_venue: str
    hq: str | None
    region: str | None
    verified: bool
    market_cap: float | None
    shares_outstanding: float | None
    btc: float
    cost_basis_usd: float | None
    last_disclosed: date | None
    source_url: str | None
    snapshot_id: int
    snapshot_created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class LatestDelta:
    snapshot_id: int
    btc: float
    cost_basis_usd: float | None
    last_disclosed: date | None
    source_url: str | None
    snapshot_created_at: datetime
    # None when the entity has a single snapshot.
    delta: float | None


@dataclass(frozen=True)
class SnapshotChange:
    snapshot: HoldingsSnapshot
    # None for the oldest snapshot (nothing to compare against).
    change: float | None


def append_snapshot(
    session: Session,
    *,
    entity_id: int,
    btc: float,
    origin: str,
    cost_basis_usd: float | None = None,
    last_disclosed: date | None = None,
    source_url: str | None = None,
    created_at: datetime | None = None,
) -> HoldingsSnapshot:
    """Record a new observation. Always an insert; existing rows are never touched."""
    if btc is None or float(btc) < 0:
        raise RequestValidationError(f"btc must be >= 0 (got {btc!r})")
    if origin not in SNAPSHOT_ORIGINS:
        raise RequestValidationError(f"unknown snapshot origin: {origin!r}")

    snap = HoldingsSnapshot(
        entity_id=entity_id,
        btc=float(btc),
        cost_basis_usd=float(cost_basis_usd) if cost_basis_usd is not None else None,
        last_disclosed=last_disclosed,
        source_url=source_url,
        origin=origin,
    )
    if created_at is not None:
        snap.created_at = ensure_utc(created_at)
    session.add(snap)
    session.flush()
    return snap


def _ranked_snapshots_subquery():
    # rn == 1 is the newest snapshot per entity; created_at ties broken by id.
    return select(
        HoldingsSnapshot.id.label("snapshot_id"),
        func.row_number()
        .over(
            partition_by=HoldingsSnapshot.entity_id,
            order_by=[HoldingsSnapshot.created_at.desc(), HoldingsSnapshot.id.desc()],
        )
        .label("rn"),
    ).subquery()


def latest_state(session: Session, *, region: str | None = None) -> List[LatestHolding]:
    """Current holdings per entity: the snapshot with the greatest created_at.

    Computed from the snapshot table on every call, so a newly appended
    snapshot or an updated entity field is visible to the next read.
    Entities without any snapshot are not part of the projection.
    """
    ranked = _ranked_snapshots_subquery()

    qry = (
        session.query(Entity, HoldingsSnapshot)
        .join(HoldingsSnapshot, HoldingsSnapshot.entity_id == Entity.id)
        .join(ranked, ranked.c.snapshot_id == HoldingsSnapshot.id)
        .filter(ranked.c.rn == 1)
    )

    norm = normalize_region(region)
    if norm:
        qry = qry.filter(Entity.region == norm)

    rows = qry.order_by(HoldingsSnapshot.btc.desc(), Entity.id).all()

    out: List[LatestHolding] = []
    for entity, snap in rows:
        snap_at = ensure_utc(snap.created_at)
        ent_at = ensure_utc(entity.updated_at) or snap_at
        out.append(
            LatestHolding(
                entity_id=entity.id,
                legal_name=entity.legal_name,
                ticker=entity.ticker,
                listing_venue=entity.listing_venue,
                hq=entity.hq,
                region=entity.region,
                verified=bool(entity.verified),
                market_cap=entity.market_cap,
                shares_outstanding=entity.shares_outstanding,
                btc=float(snap.btc),
                cost_basis_usd=snap.cost_basis_usd,
                last_disclosed=snap.last_disclosed,
                source_url=snap.source_url,
                snapshot_id=snap.id,
                snapshot_created_at=snap_at,
                updated_at=max(snap_at, ent_at),
            )
        )
    return out


def latest_with_deltas(
    session: Session, entity_ids: Iterable[int]
) -> Dict[int, LatestDelta]:
    """Newest snapshot per entity together with its delta, from one query.

    The btc and the delta of each entry come from the same read, so they
    always describe the same pair of snapshots even while other writers
    append. Ids without snapshots are absent.
    """
    ids = sorted({int(i) for i in entity_ids})
    if not ids:
        return {}

    rows = (
        session.query(
            HoldingsSnapshot.entity_id,
            HoldingsSnapshot.id,
            HoldingsSnapshot.btc,
            HoldingsSnapshot.cost_basis_usd,
            HoldingsSnapshot.last_disclosed,
            HoldingsSnapshot.source_url,
            HoldingsSnapshot.created_at,
        )
        .filter(HoldingsSnapshot.entity_id.in_(ids))
        .order_by(
            HoldingsSnapshot.entity_id,
            HoldingsSnapshot.created_at.desc(),
            HoldingsSnapshot.id.desc(),
        )
        .all()
    )

    newest: Dict[int, tuple] = {}
    previous: Dict[int, float] = {}
    for row in rows:
        entity_id = row[0]
        if entity_id not in newest:
            newest[entity_id] = row
        elif entity_id not in previous:
            previous[entity_id] = float(row[2])

    out: Dict[int, LatestDelta] = {}
    for entity_id, (_eid, snap_id, btc, cost, disclosed, source, created) in newest.items():
        prev = previous.get(entity_id)
        out[entity_id] = LatestDelta(
            snapshot_id=snap_id,
            btc=float(btc),
            cost_basis_usd=cost,
            last_disclosed=disclosed,
            source_url=source,
            snapshot_created_at=ensure_utc(created),
            delta=float(btc) - prev if prev is not None else None,
        )
    return out


def compute_deltas(
    session: Session, entity_ids: Iterable[int]
) -> Dict[int, Optional[float]]:
    """Batched delta: newest btc minus the immediately preceding btc, per entity.

    One query regardless of how many ids are requested. An entity with a
    single snapshot maps to None ("insufficient history"), which is distinct
    from 0.0 ("two snapshots, no change"). Ids without snapshots are absent.
    """
    return {
        entity_id: latest.delta
        for entity_id, latest in latest_with_deltas(session, entity_ids).items()
    }


def snapshot_history(session: Session, entity_id: int) -> List[SnapshotChange]:
    """All snapshots of one entity, newest first, each with its change vs the next-older one."""
    snaps = (
        session.query(HoldingsSnapshot)
        .filter(HoldingsSnapshot.entity_id == entity_id)
        .order_by(HoldingsSnapshot.created_at.desc(), HoldingsSnapshot.id.desc())
        .all()
    )
    out: List[SnapshotChange] = []
    for i, snap in enumerate(snaps):
        older = snaps[i + 1] if i + 1 < len(snaps) else None
        change = float(snap.btc) - float(older.btc) if older is not None else None
        out.append(SnapshotChange(snapshot=snap, change=change))
    return out
