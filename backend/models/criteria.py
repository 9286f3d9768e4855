"""
Trial criterion schema.

A criterion is one eligibility rule from a trial protocol. Free text is always
present; the structured fields are optional and an evaluator falls back to the
free text when the field it needs is absent.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from backend.models.enums import ExclusionStrength


class Timeframe(BaseModel):
    """A duration plus the relation it imposes (within / after / before / for)."""
    amount: Optional[float] = None
    unit: str = "weeks"
    relation: Optional[str] = None


class MeasurementRule(BaseModel):
    """Threshold on a named measurement (BSA, PASI, IGA, DLQI)."""
    threshold: float
    comparison: str = ">="


class ConditionSpec(BaseModel):
    """One sub-condition of a categorical criterion."""
    condition_type: List[str] = Field(default_factory=list)
    condition_pattern: List[str] = Field(default_factory=list)
    treatment_type: List[str] = Field(default_factory=list)
    treatment_pattern: List[str] = Field(default_factory=list)
    infection_type: List[str] = Field(default_factory=list)
    severity: Optional[str] = None
    timeframe: Optional[Timeframe] = None


class Criterion(BaseModel):
    """Immutable eligibility rule, tagged with its trial and cluster."""
    model_config = ConfigDict(frozen=True)

    id: str
    nct_id: str
    cluster_code: str
    raw_text: str = ""
    exclusion_strength: ExclusionStrength = ExclusionStrength.EXCLUSION

    # AGE / BMI
    age_min: Optional[float] = None
    age_max: Optional[float] = None
    bmi_min: Optional[float] = None
    bmi_max: Optional[float] = None
    weight_min: Optional[float] = None
    weight_max: Optional[float] = None

    # AAO
    measurements: Dict[str, MeasurementRule] = Field(default_factory=dict)

    # SEV
    severity: Optional[str] = None

    # CPD
    duration_min: Optional[float] = None
    duration_unit: str = "months"

    # NPV
    variant_type: List[str] = Field(default_factory=list)

    # BIO
    biomarker_type: Optional[str] = None
    threshold: Optional[float] = None
    comparison: str = ">="

    # FLR
    flare_count: Optional[float] = None
    timeframe: Optional[Timeframe] = None

    # CMB / PTH / AIC
    conditions: List[ConditionSpec] = Field(default_factory=list)

    @property
    def is_inclusion(self) -> bool:
        return self.exclusion_strength == ExclusionStrength.INCLUSION
