"""Patient matching and admin review API routes."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request

from backend.api.requests import MatchRequest, ReviewDecisionRequest
from backend.api.responses import MatchResponse, ReviewListResponse
from backend.config.logging_config import get_logger
from backend.eligibility.exceptions import InvalidPatientFactsError
from backend.eligibility.matcher import PatientMatcher
from backend.eligibility.triage import TriageThresholds, filter_ignored
from backend.models.results import TrialEligibilityResult

logger = get_logger(__name__)

router = APIRouter(tags=["Matching"])


def _get_matcher(request: Request) -> PatientMatcher:
    matcher = getattr(request.app.state, "matcher", None)
    if matcher is None:
        raise HTTPException(status_code=503, detail="Matching engine not initialized")
    return matcher


def _get_review_store(request: Request):
    store = getattr(request.app.state, "review_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Review store not configured")
    return store


def _trial_payload(
    trial: TrialEligibilityResult,
    thresholds: TriageThresholds,
    include_ignored: bool,
) -> Dict[str, Any]:
    data = trial.to_dict()
    if not include_ignored:
        kept = {r.criterion_id for r in filter_ignored(trial.matched_criteria, thresholds)}
        data["failed_inclusions"] = [c for c in data["failed_inclusions"] if c["criterion_id"] in kept]
        data["matched_exclusions"] = [c for c in data["matched_exclusions"] if c["criterion_id"] in kept]
    return data


@router.post("/match", response_model=MatchResponse)
async def match_patient(body: MatchRequest, request: Request):
    """Match one patient's answers against every trial in the corpus."""
    matcher = _get_matcher(request)
    if body.thresholds is not None:
        overrides = body.thresholds.model_dump(exclude_none=True)
        matcher = matcher.with_thresholds(matcher.thresholds.model_copy(update=overrides))

    try:
        results = await matcher.match_patient(body.patient_facts)
    except InvalidPatientFactsError as e:
        raise HTTPException(status_code=400, detail=str(e))

    def bucket(trials):
        return [_trial_payload(t, matcher.thresholds, body.include_ignored) for t in trials]

    return {
        "timestamp": results.timestamp.isoformat(),
        "summary": results.get_summary(),
        "eligible_trials": bucket(results.eligible_trials),
        "needs_review_trials": bucket(results.needs_review_trials),
        "ineligible_trials": bucket(results.ineligible_trials),
    }


@router.get("/reviews/pending", response_model=ReviewListResponse)
async def list_pending_reviews(request: Request):
    """List matches waiting for human adjudication."""
    store = _get_review_store(request)
    reviews = await store.list_pending()
    return {"count": len(reviews), "reviews": [r.to_dict() for r in reviews]}


@router.post("/reviews/{review_id}/approve")
async def approve_review(review_id: str, request: Request, body: Optional[ReviewDecisionRequest] = None):
    """Approve a pending review."""
    store = _get_review_store(request)
    review = await store.approve(review_id, notes=body.notes if body else None)
    if review is None:
        raise HTTPException(status_code=404, detail=f"Pending review not found: {review_id}")
    return review.to_dict()


@router.post("/reviews/{review_id}/reject")
async def reject_review(review_id: str, request: Request, body: Optional[ReviewDecisionRequest] = None):
    """Reject a pending review."""
    store = _get_review_store(request)
    review = await store.reject(review_id, notes=body.notes if body else None)
    if review is None:
        raise HTTPException(status_code=404, detail=f"Pending review not found: {review_id}")
    return review.to_dict()
