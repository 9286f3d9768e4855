"""Semantic fallback - last tier of the match cascade.

Wraps any object exposing
``async match(patient_term, criterion_term, context, cluster_code) -> SemanticMatch``
(ClaudeSemanticClient in production, stubs in tests). Failures never
propagate: an absent capability yields an ``ai_unavailable`` verdict and a
failed call yields ``ai_error``.
"""

from typing import Any, List, Optional

from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.models.criteria import Criterion
from backend.models.enums import MatchMethod
from backend.models.results import ClusterEvaluation, ReviewPayload
from backend.eligibility.exceptions import SemanticCapabilityUnavailable
from backend.eligibility.lookup_tables import ConfidenceTiers
from backend.eligibility.match_cascade import semantic_unavailable
from backend.semantic.response_cache import SemanticResponseCache

logger = get_logger(__name__)


class SemanticFallbackHandler:
    """Cluster-aware semantic matching with a response cache in front."""

    def __init__(
        self,
        client: Optional[Any] = None,
        cache: Optional[SemanticResponseCache] = None,
        enabled: bool = True,
    ):
        self.client = client
        self.cache = cache
        self.enabled = enabled

    def is_enabled(self) -> bool:
        return self.enabled and self.client is not None

    async def match_term(
        self,
        cluster_code: str,
        patient_term: str,
        criterion_terms: List[str],
        criterion: Criterion,
        tiers: ConfidenceTiers,
        patient_id: Optional[str] = None,
    ) -> ClusterEvaluation:
        """
        Ask the semantic capability whether patient_term satisfies criterion_terms.

        Returns:
            ClusterEvaluation, always flagged requires_ai and needs_admin_review
        """
        patient_value = f"Patient: {patient_term}"
        if not self.is_enabled():
            return semantic_unavailable(patient_term, tiers)

        joined_terms = "; ".join(criterion_terms)
        cache_context = f"{cluster_code}|{criterion.raw_text}"
        result = self.cache.get(patient_term, joined_terms, cache_context) if self.cache else None

        if result is None:
            try:
                result = await self.client.match(
                    patient_term,
                    criterion_terms,
                    context=criterion.raw_text,
                    cluster_code=cluster_code,
                )
            except Exception as exc:
                logger.warning(
                    "Semantic fallback failed",
                    criterion_id=criterion.id,
                    nct_id=criterion.nct_id,
                    patient_term=patient_term,
                    error=str(exc),
                )
                return ClusterEvaluation(
                    matches=False,
                    confidence=tiers.error_fallback,
                    requires_ai=True,
                    ai_reasoning=f"AI error: {exc}",
                    needs_admin_review=True,
                    match_method=MatchMethod.AI_ERROR,
                    patient_value=patient_value,
                    confidence_reason="Semantic fallback call failed",
                )
            if self.cache is not None:
                self.cache.set(patient_term, joined_terms, result, cache_context)

        confidence = min(result.confidence, tiers.semantic_max)
        logger.info(
            "Semantic fallback answered",
            criterion_id=criterion.id,
            patient_term=patient_term,
            matches=result.matches,
            confidence=confidence,
        )
        return ClusterEvaluation(
            matches=result.matches,
            confidence=confidence,
            requires_ai=True,
            ai_reasoning=result.reasoning or "AI-based match",
            needs_admin_review=True,
            match_method=MatchMethod.AI_FALLBACK,
            patient_value=patient_value,
            confidence_reason=f"AI semantic analysis against: {joined_terms}. {result.reasoning}".strip(),
            review_payload=ReviewPayload(
                term=patient_term,
                criterion_id=criterion.id,
                nct_id=criterion.nct_id,
                cluster_code=cluster_code,
                patient_id=patient_id,
                ai_suggestion={
                    "matches": result.matches,
                    "confidence": result.confidence,
                    "reasoning": result.reasoning,
                    "suggested_class": result.suggested_class,
                },
            ),
        )


def build_fallback_handler() -> SemanticFallbackHandler:
    """Handler configured from settings; disabled when no API key is set."""
    settings = get_settings()
    cache = SemanticResponseCache(
        max_size=settings.semantic_cache_max_size,
        ttl_minutes=settings.semantic_cache_ttl_minutes,
    )
    if not settings.semantic_fallback_enabled:
        logger.info("Semantic fallback disabled by configuration")
        return SemanticFallbackHandler(client=None, cache=cache, enabled=False)

    from backend.semantic.claude_client import ClaudeSemanticClient

    try:
        client = ClaudeSemanticClient()
    except SemanticCapabilityUnavailable as exc:
        logger.warning("Semantic fallback unavailable", reason=str(exc))
        return SemanticFallbackHandler(client=None, cache=cache, enabled=False)
    return SemanticFallbackHandler(client=client, cache=cache, enabled=True)
