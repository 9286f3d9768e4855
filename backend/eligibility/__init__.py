"""Eligibility engine: trial index, per-cluster evaluators, match cascade and triage."""

from backend.eligibility.exceptions import (
    EligibilityError,
    InvalidPatientFactsError,
    LookupTableError,
    SemanticCapabilityError,
    SemanticCapabilityUnavailable,
)
from backend.eligibility.lookup_tables import ConfidenceTiers, DrugInfo, LookupTables, get_lookup_tables
from backend.eligibility.trial_index import TrialIndex, load_criteria_corpus
from backend.eligibility.evaluators import EVALUATOR_REGISTRY, EvaluationContext, evaluate_criterion
from backend.eligibility.triage import TriageThresholds, determine_trial_status, filter_ignored
from backend.eligibility.review_sink import InMemoryReviewStore, PendingReview, ReviewSink
from backend.eligibility.matcher import PatientMatcher

__all__ = [
    "EligibilityError",
    "InvalidPatientFactsError",
    "LookupTableError",
    "SemanticCapabilityError",
    "SemanticCapabilityUnavailable",
    "ConfidenceTiers",
    "DrugInfo",
    "LookupTables",
    "get_lookup_tables",
    "TrialIndex",
    "load_criteria_corpus",
    "EVALUATOR_REGISTRY",
    "EvaluationContext",
    "evaluate_criterion",
    "TriageThresholds",
    "determine_trial_status",
    "filter_ignored",
    "InMemoryReviewStore",
    "PendingReview",
    "ReviewSink",
    "PatientMatcher",
]
