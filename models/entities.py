from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
)

from models import Base
from utils.time_utils import utcnow_sa_default


class Entity(Base):
    """A tracked publicly listed company.

    `(listing_venue, exchange_code)` is the natural dedup key. `exchange_code`
    is the normalized ticker (suffix stripped, numeric codes zero-padded per
    venue); `ticker` keeps the display spelling, e.g. "1357.HK".

    Rows are never hard-deleted. Two rows describing one company under
    different ticker spellings are merged administratively.
    """

    __tablename__ = "entities"
    __table_args__ = (
        UniqueConstraint(
            "listing_venue",
            "exchange_code",
            name="uq_entities_venue_exchange_code",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    legal_name = Column(String, nullable=False)
    ticker = Column(String, nullable=False)
    exchange_code = Column(String, nullable=False, index=True)
    listing_venue = Column(String, nullable=False)

    hq = Column(String, nullable=True)
    # Upper-case region code, e.g. 'HK', 'CN', 'JP'.
    region = Column(String, nullable=True, index=True)

    # Set by administrative review.
    verified = Column(Boolean, nullable=False, default=False)

    market_cap = Column(Float, nullable=True)
    shares_outstanding = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow_sa_default)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=utcnow_sa_default,
        onupdate=utcnow_sa_default,
    )
