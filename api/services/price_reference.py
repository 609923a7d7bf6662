from __future__ import annotations

from sqlalchemy.orm import Session

from api.errors import NoPriceDataError, RequestValidationError
from models.price_snapshots import PriceSnapshot


def latest_price(session: Session) -> PriceSnapshot:
    """Return the most recent price observation.

    Raises NoPriceDataError when the store is empty. Callers that value
    holdings must let this propagate.
    """
    snap = (
        session.query(PriceSnapshot)
        .order_by(PriceSnapshot.created_at.desc(), PriceSnapshot.id.desc())
        .first()
    )
    if snap is None:
        raise NoPriceDataError("No price data available")
    return snap


def record_price(
    session: Session, *, btc_usd: float, source: str | None = None
) -> PriceSnapshot:
    if btc_usd is None or float(btc_usd) <= 0:
        raise RequestValidationError(f"btc_usd must be > 0 (got {btc_usd!r})")
    snap = PriceSnapshot(btc_usd=float(btc_usd), source=source)
    session.add(snap)
    session.flush()
    return snap
