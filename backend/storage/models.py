"""SQLAlchemy ORM models for the eligibility database."""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Text, JSON, Index
from sqlalchemy.orm import declarative_base


def _utcnow():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


Base = declarative_base()


class PendingReviewModel(Base):
    """A match waiting for human adjudication."""
    __tablename__ = "pending_reviews"

    id = Column(String(64), primary_key=True)
    term = Column(String(300), nullable=False)
    normalized_term = Column(String(300), nullable=False)
    criterion_id = Column(String(100), nullable=False)
    nct_id = Column(String(50), nullable=False)
    cluster_code = Column(String(10), nullable=False)
    matched_with = Column(String(300), nullable=True)
    patient_id = Column(String(100), nullable=True)
    ai_suggestion = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index('ix_pending_reviews_status', 'status'),
        Index('ix_pending_reviews_dedupe', 'normalized_term', 'nct_id', 'patient_id', 'status'),
    )
