"""Facts Adapter - normalizes raw corpus criteria and raw questionnaire answers.

Raw criteria use the corpus field names (AGE_MIN, CONDITION_TYPE, TIMEFRAME,
...). Raw patient answers are keyed by cluster code and may arrive wrapped in
a {"responses": {...}} envelope.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from backend.models.criteria import ConditionSpec, Criterion, MeasurementRule, Timeframe
from backend.models.enums import ClusterCode, ExclusionStrength
from backend.models.patient import (
    AgeFacts,
    BodyFacts,
    ConditionRecord,
    DurationFacts,
    FlareFacts,
    InfectionRecord,
    PatientFacts,
    TreatmentRecord,
)
from backend.eligibility.exceptions import InvalidPatientFactsError
from backend.eligibility.thresholds import safe_float
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

MEASUREMENT_TYPES = ("BSA", "PASI", "IGA", "DLQI")
POUNDS_TO_KG = 0.453592


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    text = str(value).strip()
    return [text] if text else []


def _as_label(value) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _timeframe(value) -> Optional[Timeframe]:
    if not isinstance(value, dict):
        return None
    return Timeframe(
        amount=safe_float(value.get("amount")),
        unit=str(value.get("unit") or "weeks"),
        relation=value.get("relation"),
    )


def _exclusion_strength(value) -> ExclusionStrength:
    if isinstance(value, str) and value.strip().lower() == ExclusionStrength.INCLUSION.value:
        return ExclusionStrength.INCLUSION
    return ExclusionStrength.EXCLUSION


def _condition_spec(raw: Dict[str, Any]) -> ConditionSpec:
    return ConditionSpec(
        condition_type=_as_list(raw.get("CONDITION_TYPE")),
        condition_pattern=_as_list(raw.get("CONDITION_PATTERN")),
        treatment_type=_as_list(raw.get("TREATMENT_TYPE")),
        treatment_pattern=_as_list(raw.get("TREATMENT_PATTERN")),
        infection_type=_as_list(raw.get("INFECTION_TYPE")),
        severity=_as_label(raw.get("SEVERITY")),
        timeframe=_timeframe(raw.get("TIMEFRAME")),
    )


def _measurement_rules(raw: Dict[str, Any]) -> Dict[str, MeasurementRule]:
    rules = {}
    for name in MEASUREMENT_TYPES:
        threshold = safe_float(raw.get(f"{name}_THRESHOLD"))
        if threshold is None:
            threshold = safe_float(raw.get(f"{name}_MIN"))
        if threshold is None:
            continue
        rules[name] = MeasurementRule(
            threshold=threshold,
            comparison=str(raw.get(f"{name}_COMPARISON") or ">="),
        )
    return rules


def normalize_criterion(raw: Dict[str, Any], cluster_code: str) -> Criterion:
    """
    Convert one raw corpus criterion into a Criterion.

    Args:
        raw: Criterion object from the corpus
        cluster_code: Code of the cluster the criterion was listed under

    Returns:
        Immutable Criterion
    """
    raw_conditions = raw.get("conditions")
    if isinstance(raw_conditions, list) and raw_conditions:
        conditions = [_condition_spec(c) for c in raw_conditions if isinstance(c, dict)]
    else:
        conditions = [_condition_spec(raw)]

    return Criterion(
        id=str(raw.get("id") or ""),
        nct_id=str(raw.get("nct_id") or ""),
        cluster_code=str(cluster_code or "").upper(),
        raw_text=str(raw.get("raw_text") or ""),
        exclusion_strength=_exclusion_strength(raw.get("EXCLUSION_STRENGTH")),
        age_min=safe_float(raw.get("AGE_MIN")),
        age_max=safe_float(raw.get("AGE_MAX")),
        bmi_min=safe_float(raw.get("BMI_MIN")),
        bmi_max=safe_float(raw.get("BMI_MAX")),
        weight_min=safe_float(raw.get("WEIGHT_MIN")),
        weight_max=safe_float(raw.get("WEIGHT_MAX")),
        measurements=_measurement_rules(raw),
        severity=_as_label(raw.get("SEVERITY") or raw.get("SEVERITY_MIN")),
        duration_min=safe_float(raw.get("DURATION_MIN")),
        duration_unit=str(raw.get("DURATION_UNIT") or "months"),
        variant_type=_as_list(raw.get("VARIANT_TYPE")),
        biomarker_type=_as_label(raw.get("BIOMARKER_TYPE")),
        threshold=safe_float(raw.get("THRESHOLD")),
        comparison=str(raw.get("COMPARISON") or ">="),
        flare_count=safe_float(raw.get("FLARE_COUNT")),
        timeframe=_timeframe(raw.get("TIMEFRAME")),
        conditions=conditions,
    )


# --- Patient facts ---

def _age(raw) -> Optional[AgeFacts]:
    if isinstance(raw, dict):
        age = safe_float(raw.get("age"))
    else:
        age = safe_float(raw)
    return AgeFacts(age=age) if age is not None else None


def _body(raw) -> Optional[BodyFacts]:
    if not isinstance(raw, dict):
        return None
    weight = raw.get("weight")
    unit = "kg"
    if isinstance(weight, dict):
        unit = str(weight.get("unit") or "kg").lower()
        weight = weight.get("value")
    weight_value = safe_float(weight)
    weight_kg = weight_value
    if weight_value is not None and unit in ("lb", "lbs", "pound", "pounds"):
        weight_kg = round(weight_value * POUNDS_TO_KG, 2)
    facts = BodyFacts(
        bmi=safe_float(raw.get("bmi")),
        weight_kg=weight_kg,
        weight_display=f"{weight_value:g}{unit}" if weight_value is not None else None,
    )
    if facts.bmi is None and facts.weight_kg is None:
        return None
    return facts


def _records(raw, builder) -> Optional[list]:
    if not isinstance(raw, list):
        return None
    records = []
    for item in raw:
        if isinstance(item, dict):
            records.append(builder(item))
    return records


def _condition_record(raw: Dict[str, Any]) -> ConditionRecord:
    return ConditionRecord(
        condition_type=_as_list(raw.get("CONDITION_TYPE")),
        condition_pattern=_as_list(raw.get("CONDITION_PATTERN")),
        severity=_as_label(raw.get("SEVERITY")),
        timeframe=_timeframe(raw.get("TIMEFRAME")),
    )


def _treatment_record(raw: Dict[str, Any]) -> TreatmentRecord:
    return TreatmentRecord(
        treatment_type=_as_list(raw.get("TREATMENT_TYPE")),
        timeframe=_timeframe(raw.get("TIMEFRAME")),
    )


def _infection_record(raw: Dict[str, Any]) -> InfectionRecord:
    return InfectionRecord(
        infection_type=_as_list(raw.get("INFECTION_TYPE")),
        severity=_as_label(raw.get("SEVERITY")),
        timeframe=_timeframe(raw.get("TIMEFRAME")),
    )


def _numeric_map(raw) -> Optional[Dict[str, float]]:
    """{"BSA": {"value": 12}} or {"CRP": "5.2"} -> {"BSA": 12.0, "CRP": 5.2}"""
    if not isinstance(raw, dict):
        return None
    values = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            value = value.get("value")
        number = safe_float(value)
        if number is not None:
            values[str(key)] = number
    return values


def _label_field(raw, key: str) -> Optional[str]:
    if isinstance(raw, dict):
        return _as_label(raw.get(key))
    return _as_label(raw)


def _duration(raw) -> Optional[DurationFacts]:
    if not isinstance(raw, dict):
        return None
    return DurationFacts(duration=safe_float(raw.get("duration")), unit=str(raw.get("unit") or "months"))


def _flares(raw) -> Optional[FlareFacts]:
    if not isinstance(raw, dict):
        return None
    return FlareFacts(count=safe_float(raw.get("count")), timeframe=_timeframe(raw.get("timeframe")))


_CLUSTER_BUILDERS = {
    ClusterCode.AGE.value: ("age", _age),
    ClusterCode.BMI.value: ("body", _body),
    ClusterCode.COMORBIDITY.value: ("comorbidities", lambda r: _records(r, _condition_record)),
    ClusterCode.TREATMENT_HISTORY.value: ("treatments", lambda r: _records(r, _treatment_record)),
    ClusterCode.INFECTION.value: ("infections", lambda r: _records(r, _infection_record)),
    ClusterCode.MEASUREMENT.value: ("measurements", _numeric_map),
    ClusterCode.SEVERITY.value: ("severity", lambda r: _label_field(r, "severity")),
    ClusterCode.DURATION.value: ("duration", _duration),
    ClusterCode.VARIANT.value: ("variant", lambda r: _label_field(r, "variant")),
    ClusterCode.BIOMARKER.value: ("biomarkers", _numeric_map),
    ClusterCode.FLARE.value: ("flares", _flares),
}


def normalize_patient_facts(raw: Any) -> PatientFacts:
    """
    Convert raw questionnaire answers into PatientFacts.

    A cluster whose answer cannot be read is left unset, so evaluators report
    it as missing data instead of failing.

    Raises:
        InvalidPatientFactsError: If no facts object was supplied
    """
    if isinstance(raw, PatientFacts):
        return raw
    if not isinstance(raw, dict):
        raise InvalidPatientFactsError(
            f"Patient facts must be an object, got {type(raw).__name__}"
        )

    responses = raw.get("responses") if isinstance(raw.get("responses"), dict) else raw
    fields: Dict[str, Any] = {}
    for code, (field_name, builder) in _CLUSTER_BUILDERS.items():
        if code not in responses:
            continue
        try:
            fields[field_name] = builder(responses[code])
        except (ValidationError, TypeError, ValueError) as exc:
            logger.debug("Unreadable patient cluster treated as missing", cluster=code, error=str(exc))

    patient_id = raw.get("patient_id") or responses.get("patient_id")
    return PatientFacts(
        patient_id=str(patient_id) if patient_id else None,
        raw=dict(raw),
        **fields,
    )
