from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Integer, String

from models import Base
from utils.time_utils import utcnow_sa_default


class PriceSnapshot(Base):
    __tablename__ = "price_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)

    btc_usd = Column(Float, nullable=False)
    source = Column(String, nullable=True)

    created_at = Column(
        DateTime, nullable=False, default=utcnow_sa_default, index=True
    )
