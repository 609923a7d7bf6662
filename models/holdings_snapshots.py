from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from models import Base
from utils.time_utils import utcnow_sa_default

ORIGIN_BULK_EXPORT = "bulk-export"
ORIGIN_FILING = "filing"
ORIGIN_MANUAL = "manual"

SNAPSHOT_ORIGINS = (ORIGIN_BULK_EXPORT, ORIGIN_FILING, ORIGIN_MANUAL)


class HoldingsSnapshot(Base):
    """One observation of an entity's Bitcoin holdings.

    Append-only. `created_at` (then `id`) totally orders an entity's history:
    the newest row is the current holdings, the one before it is the
    baseline for the delta.
    """

    __tablename__ = "holdings_snapshots"
    __table_args__ = (
        CheckConstraint("btc >= 0", name="ck_holdings_snapshots_btc_non_negative"),
        Index("ix_holdings_snapshots_entity_created", "entity_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    entity_id = Column(
        Integer,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    btc = Column(Float, nullable=False)
    cost_basis_usd = Column(Float, nullable=True)
    last_disclosed = Column(Date, nullable=True)
    source_url = Column(String, nullable=True)
    origin = Column(String, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow_sa_default)

    entity = relationship("Entity")
