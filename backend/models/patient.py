"""Patient facts grouped by cluster code.

A cluster left as None was not answered at all; evaluators treat that as
"cannot determine". An empty list means the patient answered and reported
nothing.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.models.criteria import Timeframe


class AgeFacts(BaseModel):
    age: Optional[float] = None


class BodyFacts(BaseModel):
    """BMI and weight. Weight is stored in kilograms."""
    bmi: Optional[float] = None
    weight_kg: Optional[float] = None
    weight_display: Optional[str] = None


class ConditionRecord(BaseModel):
    """One reported comorbidity."""
    condition_type: List[str] = Field(default_factory=list)
    condition_pattern: List[str] = Field(default_factory=list)
    severity: Optional[str] = None
    timeframe: Optional[Timeframe] = None


class TreatmentRecord(BaseModel):
    """One reported prior or current treatment."""
    treatment_type: List[str] = Field(default_factory=list)
    timeframe: Optional[Timeframe] = None


class InfectionRecord(BaseModel):
    """One reported infection."""
    infection_type: List[str] = Field(default_factory=list)
    severity: Optional[str] = None
    timeframe: Optional[Timeframe] = None


class DurationFacts(BaseModel):
    duration: Optional[float] = None
    unit: str = "months"


class FlareFacts(BaseModel):
    count: Optional[float] = None
    timeframe: Optional[Timeframe] = None


class PatientFacts(BaseModel):
    """Normalized answers for one matching request."""
    patient_id: Optional[str] = None
    age: Optional[AgeFacts] = None
    body: Optional[BodyFacts] = None
    comorbidities: Optional[List[ConditionRecord]] = None
    treatments: Optional[List[TreatmentRecord]] = None
    infections: Optional[List[InfectionRecord]] = None
    measurements: Optional[Dict[str, float]] = None
    severity: Optional[str] = None
    duration: Optional[DurationFacts] = None
    variant: Optional[str] = None
    biomarkers: Optional[Dict[str, float]] = None
    flares: Optional[FlareFacts] = None

    # Answers as supplied, echoed back in PatientMatchResults
    raw: Dict[str, Any] = Field(default_factory=dict)
