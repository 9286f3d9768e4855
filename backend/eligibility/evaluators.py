"""Per-cluster criterion evaluators.

Each evaluator is an async function ``(criterion, facts, ctx) -> ClusterEvaluation``
registered against one cluster code. Evaluators hold no state: everything they
read comes in through the criterion, the patient facts and the context.

Shared policies:
- Missing cluster facts -> non-match at the missing_data tier, never an error
- Structured bounds are preferred; free text is parsed when they are absent
- Unparseable free text -> non-match at the unparseable tier
- Categorical clusters (CMB, PTH, AIC, NPV) go through the match cascade
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from backend.config.logging_config import get_logger
from backend.models.criteria import ConditionSpec, Criterion, Timeframe
from backend.models.enums import ClusterCode, MatchMethod
from backend.models.patient import PatientFacts
from backend.models.results import ClusterEvaluation, CriterionMatchResult
from backend.eligibility.facts_adapter import MEASUREMENT_TYPES
from backend.eligibility.lookup_tables import ConfidenceTiers, LookupTables
from backend.eligibility.match_cascade import (
    CONDITION_STRATEGIES,
    TREATMENT_STRATEGIES,
    VARIANT_STRATEGIES,
    CascadeCandidate,
    CascadeRequest,
    MatchStrategy,
    run_cascade,
)
from backend.eligibility.text_matching import contains_phrase, normalize_term, terms_overlap
from backend.eligibility.thresholds import (
    ParsedThreshold,
    measurement_meets_threshold,
    parse_numeric_threshold,
    severity_level,
    severity_matches,
    timeframe_matches,
    timeframe_to_weeks,
)

logger = get_logger(__name__)


class EvaluationContext(BaseModel):
    """Read-only collaborators for one matching session."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    lookup: LookupTables
    tiers: ConfidenceTiers
    semantic: Optional[Any] = None
    patient_id: Optional[str] = None


# --- Evaluator Registry ---

ClusterEvaluatorFn = Callable[[Criterion, PatientFacts, EvaluationContext], Awaitable[ClusterEvaluation]]

EVALUATOR_REGISTRY: Dict[str, ClusterEvaluatorFn] = {}


def register_evaluator(*cluster_codes: str):
    """Decorator to register an evaluator function for one or more cluster codes."""
    def decorator(fn: ClusterEvaluatorFn):
        for code in cluster_codes:
            EVALUATOR_REGISTRY[code] = fn
        return fn
    return decorator


# --- Shared verdicts ---

def _missing(label: str, ctx: EvaluationContext) -> ClusterEvaluation:
    return ClusterEvaluation(
        matches=False,
        confidence=ctx.tiers.missing_data,
        patient_value="Not provided",
        confidence_reason=f"Missing patient {label} data",
    )


def _unparseable(criterion: Criterion, ctx: EvaluationContext, patient_value: str = "") -> ClusterEvaluation:
    return ClusterEvaluation(
        matches=False,
        confidence=ctx.tiers.unparseable,
        patient_value=patient_value,
        confidence_reason=f"Could not determine a threshold from criterion text: '{criterion.raw_text}'",
    )


def _within_bounds(value: float, minimum: Optional[float], maximum: Optional[float]) -> bool:
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


def _describe_bounds(minimum: Optional[float], maximum: Optional[float]) -> str:
    if minimum is not None and maximum is not None:
        return f"{minimum:g}-{maximum:g}"
    if minimum is not None:
        return f"≥ {minimum:g}"
    return f"≤ {maximum:g}"


def _parsed_verdict(
    criterion: Criterion,
    value: float,
    parsed: ParsedThreshold,
    label: str,
    patient_value: str,
    ctx: EvaluationContext,
) -> ClusterEvaluation:
    """
    Verdict for a threshold recovered from free text.

    A double-negative exclusion ("must not weigh < 30") states the requirement
    rather than the excluded condition, so the exclusion matches only when the
    requirement is NOT satisfied.
    """
    satisfied = parsed.is_satisfied(value)
    if parsed.double_negative and not criterion.is_inclusion:
        matches = not satisfied
        reason = (
            f"Double-negative exclusion read as requirement {label} {parsed.describe()}; "
            f"patient {label} {value:g} {'meets' if satisfied else 'does not meet'} it, "
            f"so the exclusion {'does not apply' if satisfied else 'applies'}"
        )
    else:
        matches = satisfied
        reason = (
            f"Parsed from text: {label} {parsed.describe()}; "
            f"patient {label} {value:g} {'meets' if satisfied else 'does not meet'} it"
        )
    return ClusterEvaluation(
        matches=matches,
        confidence=ctx.tiers.direct,
        patient_value=patient_value,
        confidence_reason=reason,
        match_method=MatchMethod.EXACT,
    )


def _mentioned_key(text: str, keys) -> Optional[str]:
    """First key named as a whole phrase in text, longest keys first."""
    for key in sorted(keys, key=len, reverse=True):
        if contains_phrase(text, key):
            return key
    return None


def _lookup_ci(values: Dict[str, float], name: str) -> Optional[float]:
    wanted = normalize_term(name)
    for key, value in values.items():
        if normalize_term(key) == wanted:
            return value
    return None


# --- Numeric clusters ---

@register_evaluator(ClusterCode.AGE.value)
async def evaluate_age(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    age = facts.age.age if facts.age else None
    if age is None:
        return _missing("age", ctx)
    patient_value = f"Age: {age:g}"

    if criterion.age_min is not None or criterion.age_max is not None:
        within = _within_bounds(age, criterion.age_min, criterion.age_max)
        return ClusterEvaluation(
            matches=within,
            confidence=ctx.tiers.exact,
            patient_value=patient_value,
            confidence_reason=(
                f"Age {age:g} {'is' if within else 'is not'} within "
                f"{_describe_bounds(criterion.age_min, criterion.age_max)}"
            ),
            match_method=MatchMethod.EXACT,
        )

    parsed = parse_numeric_threshold(criterion.raw_text)
    if parsed is None:
        return _unparseable(criterion, ctx, patient_value)
    return _parsed_verdict(criterion, age, parsed, "age", patient_value, ctx)


def _body_quantity(text: str, bmi: Optional[float], weight: Optional[float]) -> Tuple[str, Optional[float]]:
    lowered = normalize_term(text)
    if "bmi" in lowered or "body mass index" in lowered or "kg/m" in lowered:
        return "BMI", bmi
    if any(hint in lowered for hint in ("weigh", "kg", "lb", "pound")):
        return "weight", weight
    if bmi is not None:
        return "BMI", bmi
    return "weight", weight


@register_evaluator(ClusterCode.BMI.value)
async def evaluate_bmi(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    body = facts.body
    if body is None or (body.bmi is None and body.weight_kg is None):
        return _missing("BMI/weight", ctx)

    shown = []
    if body.bmi is not None:
        shown.append(f"BMI: {body.bmi:g}")
    if body.weight_kg is not None:
        shown.append(body.weight_display or f"Weight: {body.weight_kg:g} kg")
    patient_value = ", ".join(shown)

    has_bmi_bounds = criterion.bmi_min is not None or criterion.bmi_max is not None
    has_weight_bounds = criterion.weight_min is not None or criterion.weight_max is not None
    if has_bmi_bounds or has_weight_bounds:
        reasons = []
        matches = True
        if has_bmi_bounds:
            if body.bmi is None:
                return _missing("BMI", ctx)
            ok = _within_bounds(body.bmi, criterion.bmi_min, criterion.bmi_max)
            matches = matches and ok
            reasons.append(f"BMI {body.bmi:g} {'within' if ok else 'outside'} {_describe_bounds(criterion.bmi_min, criterion.bmi_max)}")
        if has_weight_bounds:
            if body.weight_kg is None:
                return _missing("weight", ctx)
            ok = _within_bounds(body.weight_kg, criterion.weight_min, criterion.weight_max)
            matches = matches and ok
            reasons.append(f"weight {body.weight_kg:g} kg {'within' if ok else 'outside'} {_describe_bounds(criterion.weight_min, criterion.weight_max)}")
        return ClusterEvaluation(
            matches=matches,
            confidence=ctx.tiers.exact,
            patient_value=patient_value,
            confidence_reason="; ".join(reasons),
            match_method=MatchMethod.EXACT,
        )

    parsed = parse_numeric_threshold(criterion.raw_text)
    if parsed is None:
        return _unparseable(criterion, ctx, patient_value)
    label, value = _body_quantity(criterion.raw_text, body.bmi, body.weight_kg)
    if value is None:
        return _missing(label, ctx)
    return _parsed_verdict(criterion, value, parsed, label, patient_value, ctx)


@register_evaluator(ClusterCode.MEASUREMENT.value)
async def evaluate_measurements(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    if facts.measurements is None:
        return _missing("measurement", ctx)
    measurements = facts.measurements

    if criterion.measurements:
        reasons = []
        shown = []
        matches = True
        for name, rule in criterion.measurements.items():
            value = _lookup_ci(measurements, name)
            if value is None:
                return _missing(f"{name} measurement", ctx)
            ok = measurement_meets_threshold(value, rule.threshold, rule.comparison)
            matches = matches and ok
            shown.append(f"{name}: {value:g}")
            reasons.append(f"{name} {value:g} {'meets' if ok else 'does not meet'} {rule.comparison} {rule.threshold:g}")
        return ClusterEvaluation(
            matches=matches,
            confidence=ctx.tiers.exact,
            patient_value=", ".join(shown),
            confidence_reason="; ".join(reasons),
            match_method=MatchMethod.EXACT,
        )

    name = _mentioned_key(criterion.raw_text, list(measurements.keys()) + list(MEASUREMENT_TYPES))
    if name is None:
        return _unparseable(criterion, ctx)
    value = _lookup_ci(measurements, name)
    if value is None:
        return _missing(f"{name} measurement", ctx)
    parsed = parse_numeric_threshold(criterion.raw_text)
    if parsed is None:
        return _unparseable(criterion, ctx, f"{name}: {value:g}")
    return _parsed_verdict(criterion, value, parsed, name, f"{name}: {value:g}", ctx)


@register_evaluator(ClusterCode.SEVERITY.value)
async def evaluate_severity(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    if not facts.severity:
        return _missing("severity", ctx)
    levels = ctx.lookup.severity_levels
    patient_value = f"Severity: {facts.severity}"

    required = criterion.severity
    confidence = ctx.tiers.exact
    if not required:
        labels = [label for label, level in levels.items() if level > 0]
        required = _mentioned_key(criterion.raw_text, labels)
        confidence = ctx.tiers.direct
        if required is None:
            return _unparseable(criterion, ctx, patient_value)

    matches = severity_matches(required, facts.severity, levels)
    return ClusterEvaluation(
        matches=matches,
        confidence=confidence,
        patient_value=patient_value,
        confidence_reason=(
            f"Severity '{facts.severity}' (level {severity_level(facts.severity, levels)}) "
            f"{'meets' if matches else 'is below'} required '{required}' (level {severity_level(required, levels)})"
        ),
        match_method=MatchMethod.EXACT,
    )


_DURATION_UNITS = ("years", "year", "months", "month", "weeks", "week", "days", "day")


@register_evaluator(ClusterCode.DURATION.value)
async def evaluate_duration(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    duration = facts.duration
    if duration is None or duration.duration is None:
        return _missing("disease duration", ctx)
    conversions = ctx.lookup.time_conversions
    patient_weeks = timeframe_to_weeks(Timeframe(amount=duration.duration, unit=duration.unit), conversions)
    patient_value = f"Duration: {duration.duration:g} {duration.unit}"

    if criterion.duration_min is not None:
        required_weeks = timeframe_to_weeks(
            Timeframe(amount=criterion.duration_min, unit=criterion.duration_unit), conversions
        )
        matches = patient_weeks >= required_weeks
        return ClusterEvaluation(
            matches=matches,
            confidence=ctx.tiers.exact,
            patient_value=patient_value,
            confidence_reason=(
                f"Duration {duration.duration:g} {duration.unit} "
                f"{'meets' if matches else 'is below'} minimum {criterion.duration_min:g} {criterion.duration_unit}"
            ),
            match_method=MatchMethod.EXACT,
        )

    parsed = parse_numeric_threshold(criterion.raw_text)
    if parsed is None:
        return _unparseable(criterion, ctx, patient_value)
    unit = _mentioned_key(criterion.raw_text, _DURATION_UNITS) or criterion.duration_unit
    unit_weeks = timeframe_to_weeks(Timeframe(amount=1, unit=unit), conversions) or 1.0
    return _parsed_verdict(
        criterion, round(patient_weeks / unit_weeks, 2), parsed, f"duration ({unit})", patient_value, ctx
    )


@register_evaluator(ClusterCode.BIOMARKER.value)
async def evaluate_biomarker(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    if facts.biomarkers is None:
        return _missing("biomarker", ctx)
    biomarkers = facts.biomarkers

    name = criterion.biomarker_type or _mentioned_key(criterion.raw_text, biomarkers.keys())
    if name is None:
        return _unparseable(criterion, ctx)
    value = _lookup_ci(biomarkers, name)
    if value is None:
        return _missing(f"{name} biomarker", ctx)
    patient_value = f"{name}: {value:g}"

    if criterion.threshold is not None:
        matches = measurement_meets_threshold(value, criterion.threshold, criterion.comparison)
        return ClusterEvaluation(
            matches=matches,
            confidence=ctx.tiers.exact,
            patient_value=patient_value,
            confidence_reason=(
                f"{name} {value:g} {'meets' if matches else 'does not meet'} "
                f"{criterion.comparison} {criterion.threshold:g}"
            ),
            match_method=MatchMethod.EXACT,
        )

    parsed = parse_numeric_threshold(criterion.raw_text)
    if parsed is None:
        return _unparseable(criterion, ctx, patient_value)
    return _parsed_verdict(criterion, value, parsed, name, patient_value, ctx)


@register_evaluator(ClusterCode.FLARE.value)
async def evaluate_flares(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    flares = facts.flares
    if flares is None or flares.count is None:
        return _missing("flare history", ctx)
    patient_value = f"Flares: {flares.count:g}"

    if criterion.flare_count is not None:
        matches = flares.count >= criterion.flare_count
        reason = f"{flares.count:g} flares {'meets' if matches else 'is below'} required {criterion.flare_count:g}"
        if matches and criterion.timeframe is not None and flares.timeframe is not None:
            if not timeframe_matches(criterion.timeframe, flares.timeframe, ctx.lookup.time_conversions):
                matches = False
                reason += "; flare timeframe does not satisfy criterion timeframe"
        return ClusterEvaluation(
            matches=matches,
            confidence=ctx.tiers.exact,
            patient_value=patient_value,
            confidence_reason=reason,
            match_method=MatchMethod.EXACT,
        )

    parsed = parse_numeric_threshold(criterion.raw_text)
    if parsed is None:
        return _unparseable(criterion, ctx, patient_value)
    return _parsed_verdict(criterion, flares.count, parsed, "flare count", patient_value, ctx)


# --- Categorical clusters ---

def _failed_sub_condition(spec: ConditionSpec, record: Any, ctx: EvaluationContext) -> Optional[str]:
    """
    Pattern, severity and timeframe must also agree whenever both sides supply them.

    Returns:
        Description of the first sub-condition the record fails, or None
    """
    patient_pattern = getattr(record, "condition_pattern", None)
    if spec.condition_pattern and patient_pattern:
        if not terms_overlap(spec.condition_pattern, patient_pattern, partial=True):
            return "condition pattern"
    patient_severity = getattr(record, "severity", None)
    if spec.severity and patient_severity:
        if not severity_matches(spec.severity, patient_severity, ctx.lookup.severity_levels):
            return f"severity (required {spec.severity}, patient {patient_severity})"
    patient_timeframe = getattr(record, "timeframe", None)
    if spec.timeframe is not None and patient_timeframe is not None:
        if not timeframe_matches(spec.timeframe, patient_timeframe, ctx.lookup.time_conversions):
            return "timeframe"
    return None


async def _evaluate_terms(
    criterion: Criterion,
    records: Optional[List[Any]],
    ctx: EvaluationContext,
    label: str,
    criterion_terms_of: Callable[[ConditionSpec], List[str]],
    patient_terms_of: Callable[[Any], List[str]],
    strategies: List[MatchStrategy],
) -> ClusterEvaluation:
    if records is None:
        return _missing(label, ctx)

    reported = [term for record in records for term in patient_terms_of(record)]
    if not reported:
        return ClusterEvaluation(
            matches=False,
            confidence=ctx.tiers.exact,
            patient_value="None reported",
            confidence_reason=f"Patient reports no {label}",
            match_method=MatchMethod.EXACT,
        )

    held: Optional[ClusterEvaluation] = None
    for spec in criterion.conditions or [ConditionSpec()]:
        criterion_terms = criterion_terms_of(spec) or ([criterion.raw_text] if criterion.raw_text else [])
        if not criterion_terms:
            continue
        candidates = [
            CascadeCandidate(term=term, failed_sub_condition=_failed_sub_condition(spec, record, ctx))
            for record in records
            for term in patient_terms_of(record)
        ]
        request = CascadeRequest(
            cluster_code=criterion.cluster_code,
            criterion=criterion,
            criterion_terms=criterion_terms,
            candidates=candidates,
            lookup=ctx.lookup,
            tiers=ctx.tiers,
            semantic=ctx.semantic,
            patient_id=ctx.patient_id,
        )
        verdict = await run_cascade(request, strategies)
        if verdict is not None and verdict.matches:
            return verdict
        if held is None and verdict is not None:
            held = verdict

    if held is not None:
        return held
    return ClusterEvaluation(
        matches=False,
        confidence=ctx.tiers.no_match,
        patient_value=f"Patient: {', '.join(reported)}",
        confidence_reason=f"No reported {label} matches the criterion",
    )


@register_evaluator(ClusterCode.COMORBIDITY.value)
async def evaluate_comorbidities(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    return await _evaluate_terms(
        criterion,
        facts.comorbidities,
        ctx,
        "comorbidity",
        lambda spec: spec.condition_type,
        lambda record: record.condition_type,
        CONDITION_STRATEGIES,
    )


@register_evaluator(ClusterCode.TREATMENT_HISTORY.value)
async def evaluate_treatments(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    # TREATMENT_PATTERN carries class labels ("TNF inhibitor") that drugs are matched against
    return await _evaluate_terms(
        criterion,
        facts.treatments,
        ctx,
        "treatment history",
        lambda spec: spec.treatment_type + spec.treatment_pattern,
        lambda record: record.treatment_type,
        TREATMENT_STRATEGIES,
    )


@register_evaluator(ClusterCode.INFECTION.value)
async def evaluate_infections(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    return await _evaluate_terms(
        criterion,
        facts.infections,
        ctx,
        "infection",
        lambda spec: spec.infection_type,
        lambda record: record.infection_type,
        CONDITION_STRATEGIES,
    )


@register_evaluator(ClusterCode.VARIANT.value)
async def evaluate_variant(criterion: Criterion, facts: PatientFacts, ctx: EvaluationContext) -> ClusterEvaluation:
    if not facts.variant:
        return _missing("disease variant", ctx)
    spec = ConditionSpec(condition_type=list(criterion.variant_type))
    variant_criterion = criterion.model_copy(update={"conditions": [spec]})
    return await _evaluate_terms(
        variant_criterion,
        [facts.variant],
        ctx,
        "disease variant",
        lambda s: s.condition_type,
        lambda record: [record],
        VARIANT_STRATEGIES,
    )


# --- Dispatch ---

def _to_result(criterion: Criterion, verdict: ClusterEvaluation) -> CriterionMatchResult:
    return CriterionMatchResult(
        criterion_id=criterion.id,
        nct_id=criterion.nct_id,
        cluster_code=criterion.cluster_code,
        matches=verdict.matches,
        confidence=verdict.confidence,
        exclusion_strength=criterion.exclusion_strength,
        raw_text=criterion.raw_text,
        patient_value=verdict.patient_value,
        confidence_reason=verdict.confidence_reason,
        requires_ai=verdict.requires_ai,
        ai_reasoning=verdict.ai_reasoning,
        needs_admin_review=verdict.needs_admin_review,
        match_method=verdict.match_method,
        review_payload=verdict.review_payload,
    )


async def evaluate_criterion(
    criterion: Criterion,
    facts: PatientFacts,
    ctx: EvaluationContext,
) -> CriterionMatchResult:
    """Evaluate a single criterion using the registry. Never raises."""
    evaluator = EVALUATOR_REGISTRY.get(criterion.cluster_code)
    if evaluator is None:
        logger.warning(
            "No evaluator registered for cluster",
            criterion_id=criterion.id,
            cluster=criterion.cluster_code,
        )
        verdict = ClusterEvaluation(
            matches=False,
            confidence=ctx.tiers.missing_data,
            confidence_reason=f"Unknown cluster code '{criterion.cluster_code}'",
        )
        return _to_result(criterion, verdict)

    try:
        verdict = await evaluator(criterion, facts, ctx)
    except Exception as exc:
        logger.warning(
            "Criterion evaluation failed",
            criterion_id=criterion.id,
            nct_id=criterion.nct_id,
            cluster=criterion.cluster_code,
            error=str(exc),
        )
        verdict = ClusterEvaluation(
            matches=False,
            confidence=ctx.tiers.error_fallback,
            confidence_reason=f"Error during evaluation: {type(exc).__name__}",
        )
    return _to_result(criterion, verdict)
