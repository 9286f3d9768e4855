"""
Match Cascade - ordered strategies for categorical terms.

Each strategy looks at one patient term against the criterion's term list and
returns a ClusterEvaluation or None ("no opinion"). Strategies run in list
order across every candidate term; the first matching verdict wins. A
term match on a record whose sub-conditions fail is a non-match at the tier
that found it, and the semantic strategy is never consulted for that record.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.config.logging_config import get_logger
from backend.models.criteria import Criterion
from backend.models.enums import MatchMethod
from backend.models.results import ClusterEvaluation, ReviewPayload
from backend.eligibility.lookup_tables import ConfidenceTiers, LookupTables
from backend.eligibility.text_matching import contains_phrase, find_overlap, normalize_term

logger = get_logger(__name__)


class CascadeCandidate(BaseModel):
    """One patient term plus the first criterion sub-condition its record fails, if any."""
    term: str
    failed_sub_condition: Optional[str] = None

    @property
    def sub_conditions_ok(self) -> bool:
        return self.failed_sub_condition is None


class CascadeRequest(BaseModel):
    """Everything a strategy may read. Shared read-only across strategies."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    cluster_code: str
    criterion: Criterion
    criterion_terms: List[str]
    candidates: List[CascadeCandidate] = Field(default_factory=list)
    lookup: LookupTables
    tiers: ConfidenceTiers
    semantic: Optional[Any] = None
    patient_id: Optional[str] = None


def semantic_unavailable(patient_term: str, tiers: ConfidenceTiers) -> ClusterEvaluation:
    """Conservative verdict when no semantic capability is configured."""
    return ClusterEvaluation(
        matches=False,
        confidence=tiers.semantic_unavailable,
        requires_ai=True,
        ai_reasoning="AI fallback not available",
        needs_admin_review=True,
        match_method=MatchMethod.AI_UNAVAILABLE,
        patient_value=f"Patient: {patient_term}",
        confidence_reason="No deterministic match and semantic fallback is not configured",
    )


def _sub_condition_miss(verdict: ClusterEvaluation, candidate: CascadeCandidate) -> ClusterEvaluation:
    """Turn a term match into a non-match because the record fails a sub-condition."""
    return verdict.model_copy(update={
        "matches": False,
        "needs_admin_review": False,
        "review_payload": None,
        "confidence_reason": f"{verdict.confidence_reason}; {candidate.failed_sub_condition} does not match",
    })


class MatchStrategy:
    """Base class for cascade tiers."""
    name = "base"
    deterministic = True

    async def attempt(self, request: CascadeRequest, patient_term: str) -> Optional[ClusterEvaluation]:
        raise NotImplementedError


class ExactTermStrategy(MatchStrategy):
    """Case and whitespace insensitive equality."""
    name = "exact"

    async def attempt(self, request, patient_term):
        pair = find_overlap(request.criterion_terms, [patient_term])
        if pair is None:
            return None
        return ClusterEvaluation(
            matches=True,
            confidence=request.tiers.direct,
            patient_value=f"Patient: {patient_term}",
            confidence_reason=f"Exact term match: {pair[0]}",
            match_method=MatchMethod.EXACT,
        )


class SynonymStrategy(MatchStrategy):
    """Synonym-table expansion of the patient term, then overlap or phrase containment."""
    name = "synonym"

    async def attempt(self, request, patient_term):
        expanded = request.lookup.synonyms_of(patient_term)
        if not expanded:
            return None

        pair = find_overlap(request.criterion_terms, expanded)
        if pair is None:
            for criterion_term in request.criterion_terms:
                for synonym in expanded:
                    if len(synonym) > 3 and contains_phrase(criterion_term, synonym):
                        pair = (normalize_term(criterion_term), synonym)
                        break
                if pair:
                    break
        if pair is None:
            return None

        return ClusterEvaluation(
            matches=True,
            confidence=request.tiers.synonym,
            patient_value=f"Patient: {patient_term}",
            confidence_reason=f"Synonym match: '{patient_term}' ~ '{pair[1]}' satisfies '{pair[0]}'",
            match_method=MatchMethod.SYNONYM,
        )


class PartialOverlapStrategy(MatchStrategy):
    """Substring or shared significant word overlap for compound medical terms."""
    name = "partial"

    async def attempt(self, request, patient_term):
        pair = find_overlap(request.criterion_terms, [patient_term], partial=True)
        if pair is None:
            return None
        return ClusterEvaluation(
            matches=True,
            confidence=request.tiers.partial_match,
            patient_value=f"Patient: {patient_term}",
            confidence_reason=f"Partial term match: '{pair[1]}' overlaps '{pair[0]}'",
            match_method=MatchMethod.SYNONYM,
        )


class DatabaseStrategy(MatchStrategy):
    """Drug table lookup: same drug by any name, then class membership."""
    name = "database"

    async def attempt(self, request, patient_term):
        lookup = request.lookup
        if not lookup.is_known_drug(patient_term):
            return None

        for criterion_term in request.criterion_terms:
            if lookup.drugs_match(criterion_term, patient_term):
                return ClusterEvaluation(
                    matches=True,
                    confidence=request.tiers.database,
                    patient_value=f"Patient: {patient_term}",
                    confidence_reason=f"Drug database match: {patient_term} = {criterion_term}",
                    match_method=MatchMethod.DATABASE,
                )

        info = lookup.resolve(patient_term)
        for criterion_term in request.criterion_terms:
            if lookup.drug_belongs_to_class(patient_term, criterion_term):
                return ClusterEvaluation(
                    matches=True,
                    confidence=request.tiers.database_class,
                    patient_value=f"Patient: {patient_term} ({info.drug_class})",
                    confidence_reason=f"Drug class match: {patient_term} is a {info.drug_class}, criterion '{criterion_term}'",
                    match_method=MatchMethod.DATABASE_CLASS,
                )
        return None


class DirectUnverifiedStrategy(MatchStrategy):
    """Literal match on a term the drug table does not know. Always sent for review."""
    name = "direct_unverified"

    async def attempt(self, request, patient_term):
        if request.lookup.is_known_drug(patient_term):
            return None
        pair = find_overlap(request.criterion_terms, [patient_term])
        if pair is None:
            return None

        criterion = request.criterion
        logger.info(
            "Unverified direct match queued for review",
            term=patient_term,
            criterion_id=criterion.id,
            nct_id=criterion.nct_id,
        )
        return ClusterEvaluation(
            matches=True,
            confidence=request.tiers.direct_unverified,
            needs_admin_review=True,
            patient_value=f"Patient: {patient_term}",
            confidence_reason=f"Direct match on '{pair[0]}' (term not in drug database, pending review)",
            match_method=MatchMethod.DIRECT_UNVERIFIED,
            review_payload=ReviewPayload(
                term=patient_term,
                criterion_id=criterion.id,
                nct_id=criterion.nct_id,
                cluster_code=request.cluster_code,
                matched_with=pair[0],
                patient_id=request.patient_id,
            ),
        )


class SemanticFallbackStrategy(MatchStrategy):
    """Delegate to the semantic capability. Always returns a verdict."""
    name = "semantic"
    deterministic = False

    def __init__(self, skip_known_drugs: bool = False):
        self.skip_known_drugs = skip_known_drugs

    async def attempt(self, request, patient_term):
        if self.skip_known_drugs and request.lookup.is_known_drug(patient_term):
            return None
        if request.semantic is None:
            return semantic_unavailable(patient_term, request.tiers)
        return await request.semantic.match_term(
            request.cluster_code,
            patient_term,
            request.criterion_terms,
            request.criterion,
            request.tiers,
            patient_id=request.patient_id,
        )


CONDITION_STRATEGIES: List[MatchStrategy] = [
    ExactTermStrategy(),
    SynonymStrategy(),
    PartialOverlapStrategy(),
    SemanticFallbackStrategy(),
]

TREATMENT_STRATEGIES: List[MatchStrategy] = [
    DatabaseStrategy(),
    DirectUnverifiedStrategy(),
    SemanticFallbackStrategy(skip_known_drugs=True),
]

VARIANT_STRATEGIES: List[MatchStrategy] = [
    ExactTermStrategy(),
    SynonymStrategy(),
]


async def run_cascade(request: CascadeRequest, strategies: List[MatchStrategy]) -> Optional[ClusterEvaluation]:
    """
    Try each strategy in order over every candidate term.

    A deterministic term match on a record that fails its sub-conditions
    settles that candidate as a non-match at the matching tier; later
    strategies, the semantic one included, never see it again. Candidates
    failing their sub-conditions are never sent to the semantic strategy.

    Returns:
        First matching verdict whose record passes its sub-conditions, else the
        first settled sub-condition miss, else the first non-matching verdict a
        strategy produced, else None
    """
    held: Optional[ClusterEvaluation] = None
    settled: Dict[int, ClusterEvaluation] = {}
    for strategy in strategies:
        for index, candidate in enumerate(request.candidates):
            if index in settled:
                continue
            if not strategy.deterministic and not candidate.sub_conditions_ok:
                continue
            verdict = await strategy.attempt(request, candidate.term)
            if verdict is None:
                continue
            if verdict.matches:
                if candidate.sub_conditions_ok:
                    return verdict
                logger.debug(
                    "Term matched but sub-conditions failed",
                    strategy=strategy.name,
                    term=candidate.term,
                    failed=candidate.failed_sub_condition,
                    criterion_id=request.criterion.id,
                )
                settled[index] = _sub_condition_miss(verdict, candidate)
                continue
            if held is None:
                held = verdict
    if settled:
        return settled[min(settled)]
    return held
