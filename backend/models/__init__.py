"""Data models for the trial eligibility engine."""
from .enums import (
    ClusterCode,
    ExclusionStrength,
    TrialStatus,
    MatchMethod,
    TimeRelation,
    ReviewStatus,
)
from .criteria import Criterion, ConditionSpec, MeasurementRule, Timeframe
from .patient import (
    PatientFacts,
    AgeFacts,
    BodyFacts,
    ConditionRecord,
    TreatmentRecord,
    InfectionRecord,
    DurationFacts,
    FlareFacts,
)
from .results import (
    ReviewPayload,
    ClusterEvaluation,
    CriterionMatchResult,
    TrialEligibilityResult,
    PatientMatchResults,
)

__all__ = [
    "ClusterCode",
    "ExclusionStrength",
    "TrialStatus",
    "MatchMethod",
    "TimeRelation",
    "ReviewStatus",
    "Criterion",
    "ConditionSpec",
    "MeasurementRule",
    "Timeframe",
    "PatientFacts",
    "AgeFacts",
    "BodyFacts",
    "ConditionRecord",
    "TreatmentRecord",
    "InfectionRecord",
    "DurationFacts",
    "FlareFacts",
    "ReviewPayload",
    "ClusterEvaluation",
    "CriterionMatchResult",
    "TrialEligibilityResult",
    "PatientMatchResults",
]
