"""Confidence & Triage - trial status from a trial's criterion results.

Status rule, evaluated once per trial:
- ineligible: some criterion causes ineligibility and no AI-flagged criterion
  is below the review threshold
- needs_review: some AI-flagged criterion is below the review threshold
- eligible: otherwise

The ``ignore`` threshold is not part of the rule; callers may use
filter_ignored() to hide low-confidence results downstream.
"""

from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from backend.config.settings import Settings, get_settings
from backend.models.enums import ExclusionStrength, TrialStatus
from backend.models.results import CriterionMatchResult


class TriageThresholds(BaseModel):
    """Triage thresholds, overridable per matching session."""
    exclude: float = Field(default=0.8, ge=0.0, le=1.0)
    review: float = Field(default=0.5, ge=0.0, le=1.0)
    ignore: float = Field(default=0.3, ge=0.0, le=1.0)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TriageThresholds":
        settings = settings or get_settings()
        return cls(
            exclude=settings.threshold_exclude,
            review=settings.threshold_review,
            ignore=settings.threshold_ignore,
        )


def determine_trial_status(
    results: Iterable[CriterionMatchResult],
    thresholds: TriageThresholds,
) -> TrialStatus:
    has_ineligibility = False
    has_low_confidence = False
    for result in results:
        if result.causes_ineligibility():
            has_ineligibility = True
        if result.requires_ai and result.confidence < thresholds.review:
            has_low_confidence = True

    if has_low_confidence:
        return TrialStatus.NEEDS_REVIEW
    if has_ineligibility:
        return TrialStatus.INELIGIBLE
    return TrialStatus.ELIGIBLE


def build_failure_reasons(results: Iterable[CriterionMatchResult]) -> List[str]:
    """One human-readable line per criterion that causes ineligibility."""
    reasons = []
    for result in results:
        if not result.causes_ineligibility():
            continue
        label = result.raw_text or result.criterion_id
        if result.exclusion_strength == ExclusionStrength.INCLUSION:
            reasons.append(f"Failed inclusion: {label}")
        else:
            reasons.append(f"Matched exclusion: {label}")
    return reasons


def flagged_results(results: Iterable[CriterionMatchResult]) -> List[CriterionMatchResult]:
    return [r for r in results if r.requires_ai]


def filter_ignored(
    results: Iterable[CriterionMatchResult],
    thresholds: TriageThresholds,
) -> List[CriterionMatchResult]:
    """Drop results whose confidence is below the ignore threshold."""
    return [r for r in results if r.confidence >= thresholds.ignore]
