"""Response models for eligibility API endpoints."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class MatchSummary(BaseModel):
    """Bucket counts for one matching run."""
    timestamp: str
    total_evaluated: int
    eligible: int
    ineligible: int
    needs_review: int
    eligibility_rate: float


class MatchResponse(BaseModel):
    """Response from patient matching."""
    timestamp: str
    summary: MatchSummary
    eligible_trials: List[Dict[str, Any]]
    needs_review_trials: List[Dict[str, Any]]
    ineligible_trials: List[Dict[str, Any]]


class ReviewListResponse(BaseModel):
    """Pending admin reviews."""
    count: int
    reviews: List[Dict[str, Any]]


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    components: Dict[str, bool]
    trials_indexed: int = 0
    semantic_cache: Optional[Dict[str, Any]] = None
