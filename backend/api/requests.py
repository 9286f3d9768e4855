"""Request models for eligibility API endpoints."""
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ThresholdOverrides(BaseModel):
    """Per-request triage threshold overrides."""
    exclude: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    review: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ignore: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class MatchRequest(BaseModel):
    """Patient answers to match against every trial in the corpus."""
    patient_facts: Dict[str, Any] = Field(..., description="Answers keyed by cluster code (AGE, BMI, CMB, ...)")
    thresholds: Optional[ThresholdOverrides] = Field(default=None, description="Triage threshold overrides")
    include_ignored: bool = Field(default=True, description="Keep criterion results below the ignore threshold")


class ReviewDecisionRequest(BaseModel):
    """Admin decision on a pending review."""
    notes: Optional[str] = Field(default=None, max_length=2000)
