"""Admin Review Sink - where unverified and AI-decided matches wait for a human.

The engine only calls ``record()``. The query side (list / approve / reject)
is for the admin surface.
"""

import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from backend.config.logging_config import get_logger
from backend.models.enums import ReviewStatus
from backend.models.results import ReviewPayload
from backend.eligibility.text_matching import normalize_term

logger = get_logger(__name__)


def _utcnow():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def generate_review_id() -> str:
    """review_<epoch millis>_<random suffix>"""
    return f"review_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def dedupe_key(payload: ReviewPayload) -> Tuple[str, str, str]:
    return (normalize_term(payload.term), payload.nct_id, payload.patient_id or "")


class PendingReview(BaseModel):
    """A review payload plus its adjudication state."""
    id: str = Field(default_factory=generate_review_id)
    payload: ReviewPayload
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.payload.model_dump(mode="json")
        data.update({
            "id": self.id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "notes": self.notes,
        })
        return data


class ReviewSink:
    """Capability the matcher needs: record a payload for human adjudication."""

    async def record(self, payload: ReviewPayload) -> str:
        """Store the payload and return its review id."""
        raise NotImplementedError


class InMemoryReviewStore(ReviewSink):
    """
    Process-local review queue.

    A payload whose (term, trial, patient) is already pending returns the
    existing review id instead of creating a duplicate.
    """

    def __init__(self):
        self._reviews: Dict[str, PendingReview] = {}
        self._pending_index: Dict[Tuple[str, str, str], str] = {}

    async def record(self, payload: ReviewPayload) -> str:
        key = dedupe_key(payload)
        existing = self._pending_index.get(key)
        if existing is not None:
            return existing

        review = PendingReview(payload=payload)
        self._reviews[review.id] = review
        self._pending_index[key] = review.id
        logger.info(
            "Review payload recorded",
            review_id=review.id,
            term=payload.term,
            nct_id=payload.nct_id,
            criterion_id=payload.criterion_id,
        )
        return review.id

    async def get(self, review_id: str) -> Optional[PendingReview]:
        return self._reviews.get(review_id)

    async def list_pending(self) -> List[PendingReview]:
        pending = [r for r in self._reviews.values() if r.status == ReviewStatus.PENDING]
        return sorted(pending, key=lambda r: r.created_at)

    async def approve(self, review_id: str, notes: Optional[str] = None) -> Optional[PendingReview]:
        return self._resolve(review_id, ReviewStatus.APPROVED, notes)

    async def reject(self, review_id: str, notes: Optional[str] = None) -> Optional[PendingReview]:
        return self._resolve(review_id, ReviewStatus.REJECTED, notes)

    def _resolve(self, review_id: str, status: ReviewStatus, notes: Optional[str]) -> Optional[PendingReview]:
        review = self._reviews.get(review_id)
        if review is None or review.status != ReviewStatus.PENDING:
            return None
        review.status = status
        review.resolved_at = _utcnow()
        review.notes = notes
        self._pending_index.pop(dedupe_key(review.payload), None)
        logger.info("Review resolved", review_id=review_id, status=status.value)
        return review

    def __len__(self) -> int:
        return len(self._reviews)
