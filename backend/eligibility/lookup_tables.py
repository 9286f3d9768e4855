"""Lookup tables consumed read-only by every evaluator.

Loaded once from JSON: drug classification, class search terms, medical
synonyms, severity ordinals, time-unit conversions and confidence tiers.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from backend.config.settings import get_settings
from backend.config.logging_config import get_logger
from backend.eligibility.exceptions import LookupTableError
from backend.eligibility.text_matching import contains_phrase, normalize_term

logger = get_logger(__name__)

BUNDLED_TABLES_PATH = Path(__file__).resolve().parent.parent / "data" / "lookup_tables.json"

BIOLOGIC_TERMS = [
    "biologic",
    "biologic agent",
    "biological therapy",
    "biological agent",
    "biologic treatment",
    "biologic drug",
    "monoclonal antibody",
    "antibody",
    "mAb",
]


class ConfidenceTiers(BaseModel):
    """Fixed confidence per match method. Overridable per matching session."""
    exact: float = 1.0
    direct: float = 0.95
    database: float = 0.95
    database_class: float = 0.9
    synonym: float = 0.85
    partial_match: float = 0.8
    semantic_max: float = 0.8
    direct_unverified: float = 0.75
    unparseable: float = 0.6
    missing_data: float = 0.5
    error_fallback: float = 0.5
    semantic_unavailable: float = 0.5
    no_match: float = 0.4


class DrugInfo(BaseModel):
    """Result of resolving a drug name against the classification table."""
    name: Optional[str] = None
    drug_class: str = "unknown"
    drug_type: str = "unknown"
    is_biologic: bool = False
    found: bool = False


class LookupTables:
    """Read-only drug/condition lookup shared across concurrent evaluations."""

    def __init__(self, data: Dict[str, Any]):
        self._drugs: Dict[str, Dict[str, Any]] = {}
        self._alias_index: Dict[str, str] = {}
        for name, entry in (data.get("drugs") or {}).items():
            canonical = normalize_term(name)
            self._drugs[canonical] = entry
            self._alias_index[canonical] = canonical
            for alias in entry.get("aliases", []):
                self._alias_index[normalize_term(alias)] = canonical

        self._class_terms: Dict[str, List[str]] = data.get("class_search_terms") or {}
        dmard = data.get("dmard_classes") or {}
        self._biologic_dmard = set(dmard.get("biologic", []))
        self._conventional_dmard = set(dmard.get("conventional", []))
        self._targeted_dmard = set(dmard.get("targeted_synthetic", []))

        self._synonym_groups: List[List[str]] = []
        for key, values in (data.get("medical_synonyms") or {}).items():
            group = [normalize_term(key)] + [normalize_term(v) for v in values]
            self._synonym_groups.append(group)

        self.severity_levels: Dict[str, int] = {
            normalize_term(k): int(v) for k, v in (data.get("severity_levels") or {}).items()
        }
        self.time_conversions: Dict[str, float] = {
            normalize_term(k): float(v) for k, v in (data.get("time_conversions") or {}).items()
        }
        self.confidence_tiers = ConfidenceTiers(**(data.get("confidence_tiers") or {}))
        self.metadata: Dict[str, Any] = data.get("metadata") or {}

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "LookupTables":
        """
        Load lookup tables from a JSON file.

        Args:
            path: JSON file path. Defaults to the bundled tables.

        Raises:
            LookupTableError: If the file is missing or malformed
        """
        path = Path(path) if path else BUNDLED_TABLES_PATH
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise LookupTableError(f"Lookup tables not found: {path}") from e
        except json.JSONDecodeError as e:
            raise LookupTableError(f"Lookup tables are not valid JSON: {path}: {e}") from e

        if not isinstance(data, dict):
            raise LookupTableError(f"Lookup tables must be a JSON object: {path}")
        try:
            tables = cls(data)
        except (ValidationError, AttributeError, TypeError, ValueError) as e:
            raise LookupTableError(f"Malformed lookup tables in {path}: {e}") from e

        logger.info(
            "Lookup tables loaded",
            path=str(path),
            drugs=len(tables._drugs),
            synonym_groups=len(tables._synonym_groups),
            version=tables.metadata.get("version"),
        )
        return tables

    # --- Drugs ---

    def resolve(self, term: Optional[str]) -> DrugInfo:
        canonical = self._alias_index.get(normalize_term(term))
        if canonical is None:
            return DrugInfo()
        entry = self._drugs[canonical]
        return DrugInfo(
            name=canonical,
            drug_class=entry.get("class", "unknown"),
            drug_type=entry.get("type", "unknown"),
            is_biologic=bool(entry.get("is_biologic", False)),
            found=True,
        )

    def is_known_drug(self, term: Optional[str]) -> bool:
        return normalize_term(term) in self._alias_index

    def drugs_match(self, criterion_drug: str, patient_drug: str) -> bool:
        """Same drug by name, brand or generic."""
        left, right = normalize_term(criterion_drug), normalize_term(patient_drug)
        if not left or not right:
            return False
        if left == right:
            return True
        left_name = self._alias_index.get(left)
        return left_name is not None and left_name == self._alias_index.get(right)

    def drugs_in_class(self, drug_class: str) -> List[str]:
        return [name for name, entry in self._drugs.items() if entry.get("class") == drug_class]

    def class_search_terms(self, drug_class: str) -> List[str]:
        """Terms a criterion may use to refer to a drug class, including member drug names."""
        terms = list(self._class_terms.get(drug_class, []))
        terms.extend(self.drugs_in_class(drug_class))
        return terms or [drug_class]

    def generic_search_terms(self, info: DrugInfo) -> List[str]:
        """Higher-level category terms (biologic, DMARD, small molecule) for a resolved drug."""
        if not info or not info.found:
            return []
        terms: List[str] = []
        if info.is_biologic:
            terms.extend(BIOLOGIC_TERMS)
        if info.drug_type == "small_molecule":
            terms.append("small molecule")
        if info.drug_class in self._biologic_dmard:
            terms.extend(["bDMARD", "DMARD", "biologic DMARD", "disease-modifying"])
        if info.drug_class in self._conventional_dmard:
            terms.extend(["csDMARD", "DMARD", "conventional DMARD", "immunosuppressive", "immunosuppressant"])
        if info.drug_class in self._targeted_dmard:
            terms.extend(["tsDMARD", "DMARD", "targeted synthetic DMARD"])
        return terms

    def drug_belongs_to_class(self, drug: str, class_label: str) -> bool:
        """True when a criterion's class label names the drug's class or a category containing it."""
        info = self.resolve(drug)
        if not info.found or not class_label:
            return False
        label = normalize_term(class_label).replace("_", " ")
        if label == normalize_term(info.drug_class).replace("_", " "):
            return True
        candidates = self.class_search_terms(info.drug_class) + self.generic_search_terms(info)
        return any(contains_phrase(label, term) for term in candidates)

    # --- Conditions ---

    def synonyms_of(self, term: Optional[str]) -> List[str]:
        """
        Synonym expansion for a patient term (the term itself first).

        A synonym group is pulled in when the term equals one of its entries or
        contains one as a whole phrase ("breast cancer" pulls in the cancer group).
        """
        normalized = normalize_term(term)
        if not normalized:
            return []
        expanded = [normalized]
        for group in self._synonym_groups:
            if normalized in group or any(
                len(entry) > 3 and contains_phrase(normalized, entry) for entry in group
            ):
                for entry in group:
                    if entry not in expanded:
                        expanded.append(entry)
        return expanded


@lru_cache
def get_lookup_tables() -> LookupTables:
    """Get the process-wide lookup tables."""
    settings = get_settings()
    return LookupTables.load(Path(settings.lookup_tables_path) if settings.lookup_tables_path else None)
