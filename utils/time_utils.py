"""Time helpers.

All persisted timestamps are timezone-aware UTC. SQLite drops tzinfo on
round-trip, so anything read back from the store goes through `ensure_utc`.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current time as a timezone-aware datetime in UTC (+00:00)."""

    return datetime.now(timezone.utc)


def utcnow_sa_default() -> datetime:
    """SQLAlchemy-friendly default callable for UTC timestamps."""

    return utcnow()


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return a timezone-aware UTC datetime.

    - If `dt` is naive, it is treated as UTC.
    - If `dt` is timezone-aware, it is converted to UTC.
    """

    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: datetime | None) -> str | None:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt is not None else None


def epoch_ms(now: float | None = None) -> int:
    """Milliseconds since the epoch (rate-limit reset values use this unit)."""

    return int((time.time() if now is None else now) * 1000)
