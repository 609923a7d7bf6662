"""SQLAlchemy models package.

This project uses a single declarative Base defined in `db.py`.
Import `Base` from this package in all model modules.
"""

from db import Base  # re-export a single shared Base

# Import models so they are registered with SQLAlchemy metadata on startup.
from models.entities import Entity  # noqa: F401
from models.filing_candidates import FilingCandidate  # noqa: F401
from models.holdings_snapshots import HoldingsSnapshot  # noqa: F401
from models.price_snapshots import PriceSnapshot  # noqa: F401
