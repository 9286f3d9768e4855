"""Patient Matcher - evaluates every trial in the index for one patient.

Trials are evaluated concurrently, and so are the criteria within a trial.
A criterion that fails internally becomes a non-match result, so
match_patient always returns a complete PatientMatchResults.
"""

import asyncio
from typing import Any, List, Optional

from backend.config.logging_config import get_logger, log_context
from backend.models.enums import TrialStatus
from backend.models.patient import PatientFacts
from backend.models.results import CriterionMatchResult, PatientMatchResults, TrialEligibilityResult
from backend.eligibility.evaluators import EvaluationContext, evaluate_criterion
from backend.eligibility.exceptions import InvalidPatientFactsError
from backend.eligibility.facts_adapter import normalize_patient_facts
from backend.eligibility.lookup_tables import ConfidenceTiers, LookupTables, get_lookup_tables
from backend.eligibility.review_sink import ReviewSink
from backend.eligibility.trial_index import TrialIndex
from backend.eligibility.triage import (
    TriageThresholds,
    build_failure_reasons,
    determine_trial_status,
    flagged_results,
)

logger = get_logger(__name__)


class PatientMatcher:
    """
    Match one patient's facts against every trial in a TrialIndex.

    Args:
        index: Trial index built from the criterion corpus
        lookup: Drug/condition lookup tables (defaults to the bundled tables)
        semantic: Semantic fallback handler, or None when no capability is configured
        thresholds: Triage thresholds (defaults from settings)
        tiers: Confidence tiers (defaults from the lookup tables)
        review_sink: Receives review payloads produced during matching
    """

    def __init__(
        self,
        index: TrialIndex,
        lookup: Optional[LookupTables] = None,
        semantic: Optional[Any] = None,
        thresholds: Optional[TriageThresholds] = None,
        tiers: Optional[ConfidenceTiers] = None,
        review_sink: Optional[ReviewSink] = None,
    ):
        self.index = index
        self.lookup = lookup or get_lookup_tables()
        self.semantic = semantic
        self.thresholds = thresholds or TriageThresholds.from_settings()
        self.tiers = tiers or self.lookup.confidence_tiers
        self.review_sink = review_sink

    def with_thresholds(self, thresholds: TriageThresholds) -> "PatientMatcher":
        """Matcher sharing this one's index and collaborators, with other thresholds."""
        return PatientMatcher(
            self.index,
            lookup=self.lookup,
            semantic=self.semantic,
            thresholds=thresholds,
            tiers=self.tiers,
            review_sink=self.review_sink,
        )

    def _context(self, facts: PatientFacts) -> EvaluationContext:
        return EvaluationContext(
            lookup=self.lookup,
            tiers=self.tiers,
            semantic=self.semantic,
            patient_id=facts.patient_id,
        )

    async def evaluate_trial(
        self,
        nct_id: str,
        facts: PatientFacts,
        ctx: Optional[EvaluationContext] = None,
    ) -> TrialEligibilityResult:
        """Evaluate all criteria of one trial concurrently and triage the results."""
        ctx = ctx or self._context(facts)
        criteria = self.index.criteria_for(nct_id)
        results: List[CriterionMatchResult] = list(
            await asyncio.gather(*(evaluate_criterion(c, facts, ctx) for c in criteria))
        )

        await self._record_reviews(results)

        return TrialEligibilityResult(
            nct_id=nct_id,
            status=determine_trial_status(results, self.thresholds),
            matched_criteria=results,
            flagged_criteria=flagged_results(results),
            failure_reasons=build_failure_reasons(results),
        )

    async def _record_reviews(self, results: List[CriterionMatchResult]) -> None:
        if self.review_sink is None:
            return
        for result in results:
            if result.needs_admin_review and result.review_payload is not None:
                try:
                    await self.review_sink.record(result.review_payload)
                except Exception as exc:
                    logger.warning(
                        "Failed to record review payload",
                        criterion_id=result.criterion_id,
                        error=str(exc),
                    )

    async def match_patient(self, raw_facts: Any) -> PatientMatchResults:
        """
        Evaluate every trial for one patient.

        Args:
            raw_facts: PatientFacts or raw answers keyed by cluster code

        Returns:
            PatientMatchResults with each bucket sorted by descending confidence

        Raises:
            InvalidPatientFactsError: If no facts object was supplied
        """
        if raw_facts is None:
            raise InvalidPatientFactsError("Patient facts are required")
        facts = normalize_patient_facts(raw_facts)
        ctx = self._context(facts)

        trial_ids = self.index.all_trial_ids()
        with log_context(patient_id=facts.patient_id):
            trials = await asyncio.gather(*(self.evaluate_trial(t, facts, ctx) for t in trial_ids))

        results = PatientMatchResults(patient_facts=facts.raw or facts.model_dump(exclude={"raw"}))
        for trial in trials:
            if trial.status == TrialStatus.ELIGIBLE:
                results.eligible_trials.append(trial)
            elif trial.status == TrialStatus.INELIGIBLE:
                results.ineligible_trials.append(trial)
            else:
                results.needs_review_trials.append(trial)

        for bucket in (results.eligible_trials, results.ineligible_trials, results.needs_review_trials):
            bucket.sort(key=lambda t: t.confidence_score, reverse=True)

        summary = results.get_summary()
        logger.info(
            "Patient matching complete",
            patient_id=facts.patient_id,
            total=summary["total_evaluated"],
            eligible=summary["eligible"],
            ineligible=summary["ineligible"],
            needs_review=summary["needs_review"],
        )
        return results
