from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from models import Base
from utils.time_utils import utcnow_sa_default

DETECTION_TITLE = "title-match"
DETECTION_BODY = "body-match"
DETECTION_MANUAL = "manual"

DETECTION_METHODS = (DETECTION_TITLE, DETECTION_BODY, DETECTION_MANUAL)


class FilingCandidate(Base):
    """A discovered document suspected of disclosing a treasury change.

    Created unverified by discovery; `verified` and `btc` are only changed by
    administrative review or confirmed parsing. Never auto-deleted.
    """

    __tablename__ = "filing_candidates"
    __table_args__ = (
        UniqueConstraint("entity_id", "url", name="uq_filing_candidates_entity_url"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    entity_id = Column(
        Integer,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    disclosed_at = Column(DateTime, nullable=False)
    url = Column(String, nullable=False)
    source = Column(String, nullable=False)  # e.g. 'HKEX'
    title = Column(String, nullable=False)

    detection_method = Column(String, nullable=False, default=DETECTION_TITLE)
    verified = Column(Boolean, nullable=False, default=False)
    btc = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, nullable=False, default=utcnow_sa_default)

    entity = relationship("Entity")
