"""SQL-backed admin review sink."""
from typing import List, Optional

from sqlalchemy import select

from backend.config.logging_config import get_logger
from backend.models.enums import ReviewStatus
from backend.models.results import ReviewPayload
from backend.eligibility.review_sink import PendingReview, ReviewSink, generate_review_id
from backend.eligibility.text_matching import normalize_term
from backend.storage.database import get_db
from backend.storage.models import PendingReviewModel, _utcnow

logger = get_logger(__name__)


def _to_review(row: PendingReviewModel) -> PendingReview:
    return PendingReview(
        id=row.id,
        payload=ReviewPayload(
            term=row.term,
            criterion_id=row.criterion_id,
            nct_id=row.nct_id,
            cluster_code=row.cluster_code,
            matched_with=row.matched_with,
            patient_id=row.patient_id,
            ai_suggestion=row.ai_suggestion,
        ),
        status=ReviewStatus(row.status),
        created_at=row.created_at,
        resolved_at=row.resolved_at,
        notes=row.notes,
    )


class SqlReviewStore(ReviewSink):
    """
    Persist review payloads in the pending_reviews table.

    Same dedupe rule as the in-memory store: one pending row per
    (term, trial, patient).
    """

    async def record(self, payload: ReviewPayload) -> str:
        normalized = normalize_term(payload.term)
        async with get_db() as session:
            stmt = select(PendingReviewModel).where(
                PendingReviewModel.normalized_term == normalized,
                PendingReviewModel.nct_id == payload.nct_id,
                PendingReviewModel.status == ReviewStatus.PENDING.value,
            )
            if payload.patient_id is None:
                stmt = stmt.where(PendingReviewModel.patient_id.is_(None))
            else:
                stmt = stmt.where(PendingReviewModel.patient_id == payload.patient_id)
            existing = (await session.execute(stmt)).scalars().first()
            if existing is not None:
                return existing.id

            row = PendingReviewModel(
                id=generate_review_id(),
                term=payload.term,
                normalized_term=normalized,
                criterion_id=payload.criterion_id,
                nct_id=payload.nct_id,
                cluster_code=payload.cluster_code,
                matched_with=payload.matched_with,
                patient_id=payload.patient_id,
                ai_suggestion=payload.ai_suggestion,
                status=ReviewStatus.PENDING.value,
                created_at=_utcnow(),
            )
            session.add(row)
            logger.info("Review payload stored", review_id=row.id, term=payload.term, nct_id=payload.nct_id)
            return row.id

    async def get(self, review_id: str) -> Optional[PendingReview]:
        async with get_db() as session:
            row = await session.get(PendingReviewModel, review_id)
            return _to_review(row) if row else None

    async def list_pending(self) -> List[PendingReview]:
        async with get_db() as session:
            stmt = (
                select(PendingReviewModel)
                .where(PendingReviewModel.status == ReviewStatus.PENDING.value)
                .order_by(PendingReviewModel.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_review(row) for row in rows]

    async def approve(self, review_id: str, notes: Optional[str] = None) -> Optional[PendingReview]:
        return await self._resolve(review_id, ReviewStatus.APPROVED, notes)

    async def reject(self, review_id: str, notes: Optional[str] = None) -> Optional[PendingReview]:
        return await self._resolve(review_id, ReviewStatus.REJECTED, notes)

    async def _resolve(self, review_id: str, status: ReviewStatus, notes: Optional[str]) -> Optional[PendingReview]:
        async with get_db() as session:
            row = await session.get(PendingReviewModel, review_id)
            if row is None or row.status != ReviewStatus.PENDING.value:
                return None
            row.status = status.value
            row.resolved_at = _utcnow()
            row.notes = notes
            logger.info("Review resolved", review_id=review_id, status=status.value)
            return _to_review(row)
