"""
Matching result models.

CriterionMatchResult carries the one rule that decides whether a verdict
counts against the patient (causes_ineligibility). Everything that aggregates
results goes through it.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.models.enums import ExclusionStrength, MatchMethod, TrialStatus


def _utcnow():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


class ReviewPayload(BaseModel):
    """What a human adjudicator needs to confirm an unverified match."""
    term: str
    criterion_id: str
    nct_id: str
    cluster_code: str
    matched_with: Optional[str] = None
    patient_id: Optional[str] = None
    ai_suggestion: Optional[Dict[str, Any]] = None


class ClusterEvaluation(BaseModel):
    """Raw verdict produced by a per-cluster evaluator or cascade strategy."""
    matches: bool
    confidence: float
    patient_value: str = ""
    confidence_reason: str = ""
    requires_ai: bool = False
    ai_reasoning: Optional[str] = None
    needs_admin_review: bool = False
    match_method: MatchMethod = MatchMethod.NONE
    review_payload: Optional[ReviewPayload] = None


class CriterionMatchResult(BaseModel):
    """Outcome of evaluating one criterion against one patient."""
    model_config = ConfigDict(frozen=True)

    criterion_id: str
    nct_id: str
    cluster_code: str
    matches: bool
    confidence: float = 1.0
    exclusion_strength: ExclusionStrength = ExclusionStrength.EXCLUSION
    raw_text: str = ""
    patient_value: str = ""
    confidence_reason: str = ""
    requires_ai: bool = False
    ai_reasoning: Optional[str] = None
    needs_admin_review: bool = False
    match_method: MatchMethod = MatchMethod.NONE
    review_payload: Optional[ReviewPayload] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return _clamp_confidence(value)

    def causes_ineligibility(self) -> bool:
        """Failed inclusion or matched exclusion."""
        if self.exclusion_strength == ExclusionStrength.INCLUSION:
            return not self.matches
        return self.matches

    def get_status(self) -> str:
        if self.exclusion_strength == ExclusionStrength.INCLUSION:
            return "Meets inclusion requirement" if self.matches else "Fails inclusion requirement"
        return "Matches exclusion criterion" if self.matches else "Does not match exclusion"

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["causes_ineligibility"] = self.causes_ineligibility()
        data["status"] = self.get_status()
        return data


class TrialEligibilityResult(BaseModel):
    """Aggregate verdict for one trial."""
    nct_id: str
    status: TrialStatus
    matched_criteria: List[CriterionMatchResult] = Field(default_factory=list)
    flagged_criteria: List[CriterionMatchResult] = Field(default_factory=list)
    failure_reasons: List[str] = Field(default_factory=list)

    @property
    def confidence_score(self) -> float:
        """Mean criterion confidence, 1.0 for a trial with no criteria."""
        if not self.matched_criteria:
            return 1.0
        total = sum(c.confidence for c in self.matched_criteria)
        return round(total / len(self.matched_criteria), 3)

    def get_ineligibility_criteria(self) -> List[CriterionMatchResult]:
        return [c for c in self.matched_criteria if c.causes_ineligibility()]

    def get_failed_inclusions(self) -> List[CriterionMatchResult]:
        return [
            c for c in self.matched_criteria
            if c.exclusion_strength == ExclusionStrength.INCLUSION and not c.matches
        ]

    def get_matched_exclusions(self) -> List[CriterionMatchResult]:
        return [
            c for c in self.matched_criteria
            if c.exclusion_strength != ExclusionStrength.INCLUSION and c.matches
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nct_id": self.nct_id,
            "status": self.status.value,
            "confidence": self.confidence_score,
            "total_criteria": len(self.matched_criteria),
            "flagged_count": len(self.flagged_criteria),
            "failed_inclusions": [c.to_dict() for c in self.get_failed_inclusions()],
            "matched_exclusions": [c.to_dict() for c in self.get_matched_exclusions()],
            "failure_reasons": list(self.failure_reasons),
        }


class PatientMatchResults(BaseModel):
    """All trial verdicts for one patient, bucketed by status."""
    timestamp: datetime = Field(default_factory=_utcnow)
    patient_facts: Dict[str, Any] = Field(default_factory=dict)
    eligible_trials: List[TrialEligibilityResult] = Field(default_factory=list)
    ineligible_trials: List[TrialEligibilityResult] = Field(default_factory=list)
    needs_review_trials: List[TrialEligibilityResult] = Field(default_factory=list)

    def get_total_trials_evaluated(self) -> int:
        return len(self.eligible_trials) + len(self.ineligible_trials) + len(self.needs_review_trials)

    def get_summary(self) -> Dict[str, Any]:
        total = self.get_total_trials_evaluated()
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_evaluated": total,
            "eligible": len(self.eligible_trials),
            "ineligible": len(self.ineligible_trials),
            "needs_review": len(self.needs_review_trials),
            "eligibility_rate": round(len(self.eligible_trials) / total * 100, 1) if total else 0.0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "summary": self.get_summary(),
            "eligible_trials": [t.to_dict() for t in self.eligible_trials],
            "needs_review_trials": [t.to_dict() for t in self.needs_review_trials],
            "ineligible_trials": [t.to_dict() for t in self.ineligible_trials],
        }
