"""Enumeration types for the trial eligibility engine."""
from enum import Enum


class ClusterCode(str, Enum):
    """Criterion / patient-fact categories."""
    AGE = "AGE"
    BMI = "BMI"
    COMORBIDITY = "CMB"
    TREATMENT_HISTORY = "PTH"
    INFECTION = "AIC"
    MEASUREMENT = "AAO"
    SEVERITY = "SEV"
    DURATION = "CPD"
    VARIANT = "NPV"
    BIOMARKER = "BIO"
    FLARE = "FLR"


class ExclusionStrength(str, Enum):
    """Whether a criterion must be satisfied or must not be."""
    INCLUSION = "inclusion"
    EXCLUSION = "exclusion"


class TrialStatus(str, Enum):
    """Terminal triage state of one trial for one patient."""
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
    NEEDS_REVIEW = "needs_review"


class MatchMethod(str, Enum):
    """How a criterion verdict was reached."""
    EXACT = "exact"
    SYNONYM = "synonym"
    DATABASE = "database"
    DATABASE_CLASS = "database_class"
    DIRECT_UNVERIFIED = "direct_unverified"
    AI_FALLBACK = "ai_fallback"
    AI_UNAVAILABLE = "ai_unavailable"
    AI_ERROR = "ai_error"
    NONE = "none"


class TimeRelation(str, Enum):
    """Relation between a criterion timeframe and the patient's timeframe."""
    WITHIN = "within"
    AFTER = "after"
    BEFORE = "before"
    FOR = "for"


class ReviewStatus(str, Enum):
    """Admin review lifecycle."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
