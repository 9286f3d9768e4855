"""Shared fixtures for the eligibility engine tests."""

from typing import Any, Dict, List, Optional

import pytest

from backend.eligibility.evaluators import EvaluationContext
from backend.eligibility.facts_adapter import normalize_criterion, normalize_patient_facts
from backend.eligibility.lookup_tables import LookupTables
from backend.semantic.claude_client import SemanticMatch
from backend.semantic.fallback import SemanticFallbackHandler
from backend.semantic.response_cache import SemanticResponseCache


class StubSemanticClient:
    """Stand-in for ClaudeSemanticClient: canned answer or raised error, calls recorded."""

    def __init__(self, result: Optional[SemanticMatch] = None, error: Optional[Exception] = None):
        self.result = result or SemanticMatch(matches=True, confidence=0.95, reasoning="Same condition")
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def match(self, patient_term, criterion_term, context="", cluster_code=None):
        self.calls.append({
            "patient_term": patient_term,
            "criterion_term": criterion_term,
            "context": context,
            "cluster_code": cluster_code,
        })
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(scope="session")
def lookup() -> LookupTables:
    return LookupTables.load()


@pytest.fixture
def tiers(lookup):
    return lookup.confidence_tiers


@pytest.fixture
def ctx(lookup, tiers) -> EvaluationContext:
    return EvaluationContext(lookup=lookup, tiers=tiers, patient_id="patient-1")


@pytest.fixture
def stub_client() -> StubSemanticClient:
    return StubSemanticClient()


@pytest.fixture
def make_stub_client():
    return StubSemanticClient


@pytest.fixture
def semantic_handler(stub_client) -> SemanticFallbackHandler:
    return SemanticFallbackHandler(client=stub_client, cache=SemanticResponseCache(max_size=10))


@pytest.fixture
def make_criterion():
    """Build a Criterion from corpus-style fields."""
    def _make(cluster_code: str, raw_text: str = "", strength: str = "exclusion", **fields):
        raw = {
            "id": fields.pop("id", f"{cluster_code}_001"),
            "nct_id": fields.pop("nct_id", "NCT00000001"),
            "raw_text": raw_text,
            "EXCLUSION_STRENGTH": strength,
        }
        raw.update(fields)
        return normalize_criterion(raw, cluster_code)
    return _make


@pytest.fixture
def make_facts():
    """Build PatientFacts from raw answers keyed by cluster code."""
    def _make(**responses):
        return normalize_patient_facts(dict(responses))
    return _make


@pytest.fixture
def sample_corpus() -> Dict[str, Any]:
    """Two trials: A checks age and cancer history, B checks BMI."""
    return {
        "CLUSTER_AGE": {
            "cluster_code": "AGE",
            "criteria": [
                {
                    "id": "AGE_A",
                    "nct_id": "NCT_A",
                    "raw_text": "Aged 18 to 65 years",
                    "EXCLUSION_STRENGTH": "inclusion",
                    "AGE_MIN": 18,
                    "AGE_MAX": 65,
                },
            ],
        },
        "CLUSTER_CMB": {
            "cluster_code": "CMB",
            "criteria": [
                {
                    "id": "CMB_A",
                    "nct_id": "NCT_A",
                    "raw_text": "History of cancer",
                    "EXCLUSION_STRENGTH": "exclusion",
                    "CONDITION_TYPE": ["cancer"],
                },
            ],
        },
        "CLUSTER_BMI": {
            "cluster_code": "BMI",
            "criteria": [
                {
                    "id": "BMI_B",
                    "nct_id": "NCT_B",
                    "raw_text": "BMI of 40 or more",
                    "EXCLUSION_STRENGTH": "exclusion",
                    "BMI_MIN": 40,
                },
            ],
        },
    }
