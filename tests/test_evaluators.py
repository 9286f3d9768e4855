"""
Unit tests for the per-cluster criterion evaluators.

Tests:
- Numeric clusters: AGE, BMI, AAO, SEV, CPD, BIO, FLR
- Free-text fallback, including double-negative exclusions
- Categorical clusters: CMB, PTH, AIC, NPV
- Missing data, unknown clusters and evaluator failures
"""

import pytest

from backend.models.enums import MatchMethod
from backend.eligibility.evaluators import EVALUATOR_REGISTRY, EvaluationContext, evaluate_criterion
from backend.semantic.claude_client import SemanticMatch
from backend.semantic.fallback import SemanticFallbackHandler


class TestRegistry:
    """Evaluator registration."""

    def test_all_clusters_registered(self):
        """Test every cluster code has an evaluator."""
        for code in ("AGE", "BMI", "CMB", "PTH", "AIC", "AAO", "SEV", "CPD", "NPV", "BIO", "FLR"):
            assert code in EVALUATOR_REGISTRY


class TestAge:
    """AGE cluster."""

    @pytest.mark.asyncio
    async def test_structured_inclusion_fails(self, make_criterion, make_facts, ctx):
        """Test a 16 year old fails an 18-75 inclusion criterion."""
        criterion = make_criterion("AGE", "Aged 18 to 75", strength="inclusion", AGE_MIN=18, AGE_MAX=75)
        result = await evaluate_criterion(criterion, make_facts(AGE={"age": 16}), ctx)
        assert result.matches is False
        assert result.confidence == 1.0
        assert result.causes_ineligibility() is True
        assert result.patient_value == "Age: 16"

    @pytest.mark.asyncio
    async def test_structured_exclusion(self, make_criterion, make_facts, ctx):
        """Test the same range as an exclusion flags the 16 year old as not excluded."""
        criterion = make_criterion("AGE", "Aged 18 to 75", AGE_MIN=18, AGE_MAX=75)
        result = await evaluate_criterion(criterion, make_facts(AGE=16), ctx)
        assert result.matches is False
        assert result.causes_ineligibility() is False

    @pytest.mark.asyncio
    async def test_free_text(self, make_criterion, make_facts, ctx):
        """Test free text is parsed when no bounds are given."""
        criterion = make_criterion("AGE", "Patients at least 18 years old", strength="inclusion")
        result = await evaluate_criterion(criterion, make_facts(AGE={"age": 30}), ctx)
        assert result.matches is True
        assert result.confidence == ctx.tiers.direct

    @pytest.mark.parametrize("age,applies", [(16, True), (40, False), (80, True), (18, False), (75, False)])
    @pytest.mark.asyncio
    async def test_either_or_exclusion(self, make_criterion, make_facts, ctx, age, applies):
        """Test "under 18 or over 75" excludes ages outside 18-75 only."""
        criterion = make_criterion("AGE", "Age under 18 or over 75 years")
        result = await evaluate_criterion(criterion, make_facts(AGE={"age": age}), ctx)
        assert result.matches is applies
        assert result.causes_ineligibility() is applies
        assert "outside 18-75" in result.confidence_reason

    @pytest.mark.asyncio
    async def test_missing(self, make_criterion, make_facts, ctx):
        """Test missing age is a non-match at the missing-data tier."""
        criterion = make_criterion("AGE", "Aged 18 to 75", strength="inclusion", AGE_MIN=18)
        result = await evaluate_criterion(criterion, make_facts(), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.missing_data
        assert result.confidence_reason == "Missing patient age data"

    @pytest.mark.asyncio
    async def test_unparseable(self, make_criterion, make_facts, ctx):
        """Test text with no numeric bound is a non-match at the unparseable tier."""
        criterion = make_criterion("AGE", "Adult patients", strength="inclusion")
        result = await evaluate_criterion(criterion, make_facts(AGE={"age": 30}), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.unparseable


class TestBmi:
    """BMI / weight cluster."""

    @pytest.mark.asyncio
    async def test_double_negative_weight(self, make_criterion, make_facts, ctx):
        """Test 'must not weigh < 30 kg' does not exclude a 71 kg patient."""
        criterion = make_criterion("BMI", "Subjects must not weigh < 30 kg")
        result = await evaluate_criterion(criterion, make_facts(BMI={"weight": 71}), ctx)
        assert result.matches is False
        assert result.causes_ineligibility() is False

    @pytest.mark.asyncio
    async def test_double_negative_applies(self, make_criterion, make_facts, ctx):
        """Test the same exclusion applies to a 25 kg patient."""
        criterion = make_criterion("BMI", "Subjects must not weigh < 30 kg")
        result = await evaluate_criterion(criterion, make_facts(BMI={"weight": 25}), ctx)
        assert result.matches is True

    @pytest.mark.asyncio
    async def test_max_weight_exclusion(self, make_criterion, make_facts, ctx):
        """Test 'weighing ≤ 18 kg' does not match a 71 kg patient."""
        criterion = make_criterion("BMI", "Children weighing ≤ 18 kg")
        result = await evaluate_criterion(criterion, make_facts(BMI={"weight": 71}), ctx)
        assert result.matches is False

    @pytest.mark.asyncio
    async def test_pounds_converted(self, make_criterion, make_facts, ctx):
        """Test weight in pounds is compared in kilograms."""
        criterion = make_criterion("BMI", "Weight at least 60 kg", strength="inclusion", WEIGHT_MIN=60)
        result = await evaluate_criterion(
            criterion, make_facts(BMI={"weight": {"value": 150, "unit": "lb"}}), ctx
        )
        assert result.matches is True
        assert "150lb" in result.patient_value

    @pytest.mark.asyncio
    async def test_structured_bmi(self, make_criterion, make_facts, ctx):
        """Test structured BMI bounds."""
        criterion = make_criterion("BMI", "BMI of 40 or more", BMI_MIN=40)
        result = await evaluate_criterion(criterion, make_facts(BMI={"bmi": 42.5}), ctx)
        assert result.matches is True
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_bmi_bound_without_bmi(self, make_criterion, make_facts, ctx):
        """Test a BMI bound with only weight reported is missing data."""
        criterion = make_criterion("BMI", "BMI of 40 or more", BMI_MIN=40)
        result = await evaluate_criterion(criterion, make_facts(BMI={"weight": 80}), ctx)
        assert result.confidence == ctx.tiers.missing_data


class TestMeasurements:
    """AAO cluster."""

    @pytest.mark.asyncio
    async def test_structured(self, make_criterion, make_facts, ctx):
        """Test a structured BSA threshold."""
        criterion = make_criterion("AAO", "BSA ≥ 10%", strength="inclusion", BSA_THRESHOLD=10)
        result = await evaluate_criterion(criterion, make_facts(AAO={"BSA": {"value": 12}}), ctx)
        assert result.matches is True
        assert result.patient_value == "BSA: 12"

    @pytest.mark.asyncio
    async def test_free_text(self, make_criterion, make_facts, ctx):
        """Test the measurement named in free text is compared."""
        criterion = make_criterion("AAO", "PASI ≥ 12 at screening", strength="inclusion")
        result = await evaluate_criterion(criterion, make_facts(AAO={"pasi": 9}), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.direct

    @pytest.mark.asyncio
    async def test_measurement_missing(self, make_criterion, make_facts, ctx):
        """Test a required measurement the patient did not report."""
        criterion = make_criterion("AAO", "IGA ≥ 3", strength="inclusion", IGA_THRESHOLD=3)
        result = await evaluate_criterion(criterion, make_facts(AAO={"BSA": 12}), ctx)
        assert result.confidence == ctx.tiers.missing_data


class TestSeverity:
    """SEV cluster."""

    @pytest.mark.asyncio
    async def test_structured(self, make_criterion, make_facts, ctx):
        """Test ordinal comparison against a structured minimum."""
        criterion = make_criterion("SEV", "Moderate disease", strength="inclusion", SEVERITY="moderate")
        assert (await evaluate_criterion(criterion, make_facts(SEV="severe"), ctx)).matches is True
        assert (await evaluate_criterion(criterion, make_facts(SEV={"severity": "mild"}), ctx)).matches is False

    @pytest.mark.asyncio
    async def test_from_text(self, make_criterion, make_facts, ctx):
        """Test the required level is read from text at the direct tier."""
        criterion = make_criterion("SEV", "Moderate to severe plaque psoriasis", strength="inclusion")
        result = await evaluate_criterion(criterion, make_facts(SEV="mild"), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.direct


class TestDuration:
    """CPD cluster."""

    @pytest.mark.asyncio
    async def test_unit_conversion(self, make_criterion, make_facts, ctx):
        """Test durations in different units are compared in weeks."""
        criterion = make_criterion(
            "CPD", "Diagnosed at least 6 months", strength="inclusion", DURATION_MIN=6, DURATION_UNIT="months"
        )
        result = await evaluate_criterion(criterion, make_facts(CPD={"duration": 1, "unit": "years"}), ctx)
        assert result.matches is True

    @pytest.mark.asyncio
    async def test_below_minimum(self, make_criterion, make_facts, ctx):
        """Test a shorter duration fails."""
        criterion = make_criterion("CPD", "Diagnosed at least 6 months", strength="inclusion", DURATION_MIN=6)
        result = await evaluate_criterion(criterion, make_facts(CPD={"duration": 8, "unit": "weeks"}), ctx)
        assert result.matches is False


class TestBiomarker:
    """BIO cluster."""

    @pytest.mark.asyncio
    async def test_threshold(self, make_criterion, make_facts, ctx):
        """Test biomarker names are matched case-insensitively."""
        criterion = make_criterion("BIO", "CRP ≥ 5 mg/L", strength="inclusion", BIOMARKER_TYPE="CRP", THRESHOLD=5)
        result = await evaluate_criterion(criterion, make_facts(BIO={"crp": 7}), ctx)
        assert result.matches is True

    @pytest.mark.asyncio
    async def test_biomarker_missing(self, make_criterion, make_facts, ctx):
        """Test an unreported biomarker is missing data."""
        criterion = make_criterion("BIO", "CRP ≥ 5 mg/L", strength="inclusion", BIOMARKER_TYPE="CRP", THRESHOLD=5)
        result = await evaluate_criterion(criterion, make_facts(BIO={"ESR": 3}), ctx)
        assert result.confidence == ctx.tiers.missing_data


class TestFlares:
    """FLR cluster."""

    @pytest.mark.asyncio
    async def test_count(self, make_criterion, make_facts, ctx):
        """Test the flare count minimum."""
        criterion = make_criterion("FLR", "At least 2 flares", strength="inclusion", FLARE_COUNT=2)
        assert (await evaluate_criterion(criterion, make_facts(FLR={"count": 3}), ctx)).matches is True

    @pytest.mark.asyncio
    async def test_timeframe(self, make_criterion, make_facts, ctx):
        """Test flares outside the criterion timeframe do not count."""
        criterion = make_criterion(
            "FLR",
            "At least 2 flares in the past year",
            strength="inclusion",
            FLARE_COUNT=2,
            TIMEFRAME={"amount": 12, "unit": "months", "relation": "within"},
        )
        facts = make_facts(FLR={"count": 3, "timeframe": {"amount": 2, "unit": "years"}})
        assert (await evaluate_criterion(criterion, facts, ctx)).matches is False


class TestComorbidities:
    """CMB cluster."""

    @pytest.mark.asyncio
    async def test_missing(self, make_criterion, make_facts, ctx):
        """Test an unanswered cluster is missing data."""
        criterion = make_criterion("CMB", "History of cancer", CONDITION_TYPE=["cancer"])
        result = await evaluate_criterion(criterion, make_facts(), ctx)
        assert result.confidence == ctx.tiers.missing_data

    @pytest.mark.asyncio
    async def test_none_reported(self, make_criterion, make_facts, ctx):
        """Test an empty answer is a definitive non-match."""
        criterion = make_criterion("CMB", "History of cancer", CONDITION_TYPE=["cancer"])
        result = await evaluate_criterion(criterion, make_facts(CMB=[]), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.exact
        assert result.confidence_reason == "Patient reports no comorbidity"

    @pytest.mark.asyncio
    async def test_synonym_match(self, make_criterion, make_facts, ctx):
        """Test a compound condition matches the general exclusion."""
        criterion = make_criterion("CMB", "History of cancer", CONDITION_TYPE=["cancer"])
        result = await evaluate_criterion(criterion, make_facts(CMB=[{"CONDITION_TYPE": ["lung cancer"]}]), ctx)
        assert result.matches is True
        assert result.causes_ineligibility() is True
        assert result.match_method == MatchMethod.SYNONYM

    @pytest.mark.asyncio
    async def test_severity_sub_condition(self, make_criterion, make_facts, ctx):
        """Test a condition below the required severity is a deterministic non-match."""
        criterion = make_criterion(
            "CMB", "Severe heart failure", CONDITION_TYPE=["heart failure"], SEVERITY="severe"
        )
        facts = make_facts(CMB=[{"CONDITION_TYPE": ["heart failure"], "SEVERITY": "mild"}])
        result = await evaluate_criterion(criterion, facts, ctx)
        assert result.matches is False
        assert result.requires_ai is False
        assert result.needs_admin_review is False
        assert result.match_method == MatchMethod.EXACT
        assert result.confidence == ctx.tiers.direct
        assert "severity (required severe, patient mild) does not match" in result.confidence_reason

    @pytest.mark.asyncio
    async def test_severity_sub_condition_skips_semantic(
        self, make_criterion, make_facts, lookup, tiers, make_stub_client
    ):
        """Test a severity miss is settled without calling the semantic capability."""
        client = make_stub_client(SemanticMatch(matches=False, confidence=0.3, reasoning="Unsure"))
        ctx = EvaluationContext(
            lookup=lookup, tiers=tiers, semantic=SemanticFallbackHandler(client=client), patient_id="p-2"
        )
        criterion = make_criterion(
            "CMB", "Severe heart failure", CONDITION_TYPE=["heart failure"], SEVERITY="severe"
        )
        facts = make_facts(CMB=[{"CONDITION_TYPE": ["heart failure"], "SEVERITY": "mild"}])
        result = await evaluate_criterion(criterion, facts, ctx)
        assert client.calls == []
        assert result.matches is False
        assert result.match_method == MatchMethod.EXACT
        assert result.confidence == tiers.direct

    @pytest.mark.asyncio
    async def test_semantic_fallback(self, make_criterion, make_facts, lookup, tiers, semantic_handler):
        """Test an unmatched condition is sent to the semantic capability."""
        ctx = EvaluationContext(lookup=lookup, tiers=tiers, semantic=semantic_handler, patient_id="p-9")
        criterion = make_criterion("CMB", "History of malignancy", CONDITION_TYPE=["malignancy"])
        result = await evaluate_criterion(criterion, make_facts(CMB=[{"CONDITION_TYPE": ["melanoma"]}]), ctx)
        assert result.match_method == MatchMethod.AI_FALLBACK
        assert result.needs_admin_review is True
        assert result.review_payload.patient_id == "p-9"


class TestTreatments:
    """PTH cluster."""

    @pytest.mark.asyncio
    async def test_class_pattern(self, make_criterion, make_facts, ctx):
        """Test a brand-name drug matches a class in TREATMENT_PATTERN."""
        criterion = make_criterion("PTH", "Prior TNF inhibitor use", TREATMENT_PATTERN=["TNF inhibitors"])
        result = await evaluate_criterion(criterion, make_facts(PTH=[{"TREATMENT_TYPE": ["Humira"]}]), ctx)
        assert result.matches is True
        assert result.match_method == MatchMethod.DATABASE_CLASS

    @pytest.mark.asyncio
    async def test_other_class(self, make_criterion, make_facts, ctx):
        """Test a known drug outside the class is a no-match."""
        criterion = make_criterion("PTH", "Prior TNF inhibitor use", TREATMENT_PATTERN=["TNF inhibitors"])
        result = await evaluate_criterion(criterion, make_facts(PTH=[{"TREATMENT_TYPE": ["Otezla"]}]), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.no_match


class TestInfections:
    """AIC cluster."""

    @pytest.mark.asyncio
    async def test_synonym(self, make_criterion, make_facts, ctx):
        """Test an abbreviation matches through the synonym table."""
        criterion = make_criterion("AIC", "Active tuberculosis", INFECTION_TYPE=["tuberculosis"])
        result = await evaluate_criterion(criterion, make_facts(AIC=[{"INFECTION_TYPE": ["TB"]}]), ctx)
        assert result.matches is True


class TestVariant:
    """NPV cluster."""

    @pytest.mark.asyncio
    async def test_exact(self, make_criterion, make_facts, ctx):
        """Test an exact variant match."""
        criterion = make_criterion("NPV", "Plaque psoriasis", strength="inclusion", VARIANT_TYPE=["plaque psoriasis"])
        result = await evaluate_criterion(criterion, make_facts(NPV="Plaque Psoriasis"), ctx)
        assert result.matches is True

    @pytest.mark.asyncio
    async def test_other_variant(self, make_criterion, make_facts, ctx):
        """Test a different variant is a no-match without semantic fallback."""
        criterion = make_criterion("NPV", "Plaque psoriasis", strength="inclusion", VARIANT_TYPE=["plaque psoriasis"])
        result = await evaluate_criterion(criterion, make_facts(NPV={"variant": "guttate"}), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.no_match
        assert result.causes_ineligibility() is True

    @pytest.mark.asyncio
    async def test_missing(self, make_criterion, make_facts, ctx):
        """Test a missing variant is missing data."""
        criterion = make_criterion("NPV", "Plaque psoriasis", strength="inclusion", VARIANT_TYPE=["plaque psoriasis"])
        result = await evaluate_criterion(criterion, make_facts(), ctx)
        assert result.confidence == ctx.tiers.missing_data


class TestDispatch:
    """evaluate_criterion never raises."""

    @pytest.mark.asyncio
    async def test_unknown_cluster(self, make_criterion, make_facts, ctx):
        """Test an unknown cluster code yields a neutral non-match."""
        result = await evaluate_criterion(make_criterion("XYZ", "Something"), make_facts(), ctx)
        assert result.matches is False
        assert result.confidence == 0.5
        assert result.confidence_reason == "Unknown cluster code 'XYZ'"

    @pytest.mark.asyncio
    async def test_unknown_cluster_uses_session_tiers(self, make_criterion, make_facts, lookup, tiers):
        """Test the unknown-cluster confidence follows the session's missing_data tier."""
        ctx = EvaluationContext(lookup=lookup, tiers=tiers.model_copy(update={"missing_data": 0.45}))
        result = await evaluate_criterion(make_criterion("XYZ", "Something"), make_facts(), ctx)
        assert result.confidence == 0.45

    @pytest.mark.asyncio
    async def test_evaluator_error(self, make_criterion, make_facts, ctx, monkeypatch):
        """Test an evaluator exception becomes an error-fallback verdict."""
        async def boom(criterion, facts, ctx):
            raise RuntimeError("bad data")

        monkeypatch.setitem(EVALUATOR_REGISTRY, "AGE", boom)
        result = await evaluate_criterion(make_criterion("AGE", "Aged 18+"), make_facts(AGE=30), ctx)
        assert result.matches is False
        assert result.confidence == ctx.tiers.error_fallback
        assert result.confidence_reason == "Error during evaluation: RuntimeError"

    @pytest.mark.asyncio
    async def test_idempotent(self, make_criterion, make_facts, ctx):
        """Test repeated evaluation gives identical results."""
        criterion = make_criterion("CMB", "History of cancer", CONDITION_TYPE=["cancer"])
        facts = make_facts(CMB=[{"CONDITION_TYPE": ["carcinoma"]}])
        first = await evaluate_criterion(criterion, facts, ctx)
        second = await evaluate_criterion(criterion, facts, ctx)
        assert first == second
        assert first.criterion_id == criterion.id
        assert first.nct_id == criterion.nct_id
