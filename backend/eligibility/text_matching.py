"""Term normalization and set overlap for categorical criteria."""

import re
from typing import Iterable, List, Optional, Tuple

# Shorter words and fragments ("mi", "ra", "tb") are too ambiguous for partial matching
SIGNIFICANT_WORD_LENGTH = 3

_WORD_SPLIT = re.compile(r"[\s,;/()]+")


def normalize_term(value) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if value is None:
        return ""
    return " ".join(str(value).lower().split())


def _as_terms(values) -> List[str]:
    if values is None:
        return []
    if isinstance(values, (str, int, float)):
        values = [values]
    terms = []
    for value in values:
        term = normalize_term(value)
        if term and term not in terms:
            terms.append(term)
    return terms


def _significant_words(term: str) -> set:
    return {w for w in _WORD_SPLIT.split(term) if len(w) > SIGNIFICANT_WORD_LENGTH}


def _partial_pair(left: str, right: str) -> bool:
    shorter = left if len(left) <= len(right) else right
    longer = right if shorter is left else left
    if len(shorter) > SIGNIFICANT_WORD_LENGTH and shorter in longer:
        return True
    return bool(_significant_words(left) & _significant_words(right))


def find_overlap(
    criterion_terms: Iterable,
    patient_terms: Iterable,
    partial: bool = False,
) -> Optional[Tuple[str, str]]:
    """
    Find the first (criterion term, patient term) pair that matches.

    Exact matches are preferred over partial ones. With partial enabled a pair
    also matches when one term contains the other, or when both share a word
    longer than SIGNIFICANT_WORD_LENGTH characters.

    Returns:
        The matching pair in normalized form, or None
    """
    left = _as_terms(criterion_terms)
    right = _as_terms(patient_terms)
    if not left or not right:
        return None

    right_set = set(right)
    for term in left:
        if term in right_set:
            return term, term

    if partial:
        for c_term in left:
            for p_term in right:
                if _partial_pair(c_term, p_term):
                    return c_term, p_term
    return None


def terms_overlap(criterion_terms: Iterable, patient_terms: Iterable, partial: bool = False) -> bool:
    return find_overlap(criterion_terms, patient_terms, partial=partial) is not None


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word phrase containment, tolerant of a trailing plural 's'."""
    text = normalize_term(text)
    phrase = normalize_term(phrase)
    if not text or not phrase:
        return False
    return re.search(r"(?<!\w)" + re.escape(phrase) + r"s?(?!\w)", text) is not None
