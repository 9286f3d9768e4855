"""
Numeric, timeframe and severity comparisons shared by the cluster evaluators.

Free-text threshold parsing recognises these phrasings:
- minimum: "≥ 18", "at least 18", "minimum of 18", "18 years or older", "> 18"
- maximum: "≤ 75", "at most 75", "no more than 75", "75 or less", "< 75"
- range: "18 to 75", "18-75", "between 18 and 75"; a range that follows an
  explicit bound ("BMI ≥ 18.5 for 6-12 months") is ignored
- either/or: "under 18 or over 75", "< 18 or > 75", where the value must
  fall outside the gap between the two bounds
- double negative: "must not weigh < 30 kg", which states a requirement
  (weight ≥ 30) instead of the excluded condition
"""

import math
import re
from typing import Dict, Optional

from pydantic import BaseModel

from backend.models.criteria import Timeframe
from backend.models.enums import TimeRelation
from backend.eligibility.text_matching import normalize_term

DEFAULT_SEVERITY_LEVEL = 2
EQUALITY_TOLERANCE = 0.01

_NUM = r"(\d+(?:\.\d+)?)"

_DOUBLE_NEGATIVE_MIN = re.compile(
    r"\b(?:must|should|shall|may|can|will|do|does)\s+not\s+(?:[a-z]+\s+){0,3}?"
    r"(<=|≤|=<|<|less than or equal to|less than|lower than|fewer than|under|below)\s*" + _NUM
)
_DOUBLE_NEGATIVE_MAX = re.compile(
    r"\b(?:must|should|shall|may|can|will|do|does)\s+not\s+(?:[a-z]+\s+){0,3}?"
    r"(>=|≥|=>|>|greater than or equal to|more than|greater than|higher than|over|above|exceed(?:s|ing)?)\s*" + _NUM
)
_BETWEEN = re.compile(r"\bbetween\s+" + _NUM + r"\s*(?:[a-z%/²]+\s+)?(?:and|to|-|–)\s*" + _NUM)
_RANGE = re.compile(_NUM + r"\s*(?:[a-z%/²]+\s+)?(?:to|-|–)\s*" + _NUM)
_MIN_INCLUSIVE = re.compile(
    r"(>=|≥|=>|at least|minimum(?: of)?|no less than|not less than|greater than or equal to)\s*" + _NUM
)
_MIN_INCLUSIVE_POSTFIX = re.compile(
    _NUM + r"\s*(?:[a-z%/²]+\s+){0,3}?(?:or|and)\s+(?:older|more|above|greater|over)\b(?!\s*(?:than\b|\d))"
)
_MIN_EXCLUSIVE = re.compile(r"(?<![<=≤])(?<!no )(?<!not )(>|more than|greater than|older than|over|above)\s*" + _NUM)
_MAX_INCLUSIVE = re.compile(
    r"(<=|≤|=<|at most|maximum(?: of)?|no more than|not more than|up to|less than or equal to)\s*" + _NUM
)
_MAX_INCLUSIVE_POSTFIX = re.compile(
    _NUM + r"\s*(?:[a-z%/²]+\s+){0,3}?(?:or|and)\s+(?:younger|less|below|fewer|under)\b(?!\s*(?:than\b|\d))"
)
_MAX_EXCLUSIVE = re.compile(r"(?<![>=≥])(?<!no )(?<!not )(<|less than|fewer than|younger than|under|below)\s*" + _NUM)

_STRICT_LESS = {"<", "less than", "lower than", "fewer than", "under", "below"}
_STRICT_GREATER = {">", "more than", "greater than", "higher than", "over", "above"}


class ParsedThreshold(BaseModel):
    """Numeric bounds recovered from criterion free text."""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_inclusive: bool = True
    max_inclusive: bool = True
    double_negative: bool = False
    # Either bound alone suffices: the value lies outside (maximum, minimum)
    either_or: bool = False

    def _above_minimum(self, value: float) -> bool:
        if self.minimum is None:
            return True
        return value > self.minimum or (value == self.minimum and self.min_inclusive)

    def _below_maximum(self, value: float) -> bool:
        if self.maximum is None:
            return True
        return value < self.maximum or (value == self.maximum and self.max_inclusive)

    def is_satisfied(self, value: float) -> bool:
        if self.either_or:
            return self._below_maximum(value) or self._above_minimum(value)
        return self._above_minimum(value) and self._below_maximum(value)

    def describe(self) -> str:
        lower = f"{'≥' if self.min_inclusive else '>'} {self.minimum:g}" if self.minimum is not None else None
        upper = f"{'≤' if self.max_inclusive else '<'} {self.maximum:g}" if self.maximum is not None else None
        if self.either_or:
            return f"{upper} or {lower} (outside {self.maximum:g}-{self.minimum:g})"
        return " and ".join(part for part in (lower, upper) if part) or "no bound"


def safe_float(value) -> Optional[float]:
    """Safely convert a value to float, returning None on failure."""
    if isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (ValueError, TypeError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def measurement_meets_threshold(value, threshold, comparison: Optional[str] = ">=") -> bool:
    """Compare a patient value against a criterion threshold. No threshold means no restriction."""
    if threshold is None:
        return True
    patient_value = safe_float(value)
    limit = safe_float(threshold)
    if patient_value is None or limit is None:
        return False

    operator = (comparison or ">=").strip()
    if operator == ">=":
        return patient_value >= limit
    elif operator == ">":
        return patient_value > limit
    elif operator == "<=":
        return patient_value <= limit
    elif operator == "<":
        return patient_value < limit
    elif operator in ("=", "=="):
        return abs(patient_value - limit) < EQUALITY_TOLERANCE
    return False


def parse_numeric_threshold(text: Optional[str]) -> Optional[ParsedThreshold]:
    """
    Recover numeric bounds from criterion free text.

    Args:
        text: Raw criterion text

    Returns:
        ParsedThreshold, or None when no numeric bound can be recovered
    """
    if not text:
        return None
    lowered = normalize_term(text)

    match = _DOUBLE_NEGATIVE_MIN.search(lowered)
    if match:
        # "must not be < N" requires value >= N; "must not be <= N" requires value > N
        return ParsedThreshold(
            minimum=float(match.group(2)),
            min_inclusive=match.group(1) in _STRICT_LESS,
            double_negative=True,
        )
    match = _DOUBLE_NEGATIVE_MAX.search(lowered)
    if match:
        return ParsedThreshold(
            maximum=float(match.group(2)),
            max_inclusive=match.group(1) in _STRICT_GREATER or match.group(1).startswith("exceed"),
            double_negative=True,
        )

    parsed = ParsedThreshold()
    min_match = _MIN_INCLUSIVE.search(lowered) or _MIN_INCLUSIVE_POSTFIX.search(lowered)
    if min_match:
        parsed.minimum = float(min_match.groups()[-1] if min_match.re is _MIN_INCLUSIVE else min_match.group(1))
    else:
        min_match = _MIN_EXCLUSIVE.search(lowered)
        if min_match:
            parsed.minimum = float(min_match.group(2))
            parsed.min_inclusive = False

    max_match = _MAX_INCLUSIVE.search(lowered) or _MAX_INCLUSIVE_POSTFIX.search(lowered)
    if max_match:
        parsed.maximum = float(max_match.groups()[-1] if max_match.re is _MAX_INCLUSIVE else max_match.group(1))
    else:
        max_match = _MAX_EXCLUSIVE.search(lowered)
        if max_match:
            parsed.maximum = float(max_match.group(2))
            parsed.max_inclusive = False

    bound_matches = [m for m in (min_match, max_match) if m is not None]
    range_match = _BETWEEN.search(lowered) or _RANGE.search(lowered)
    if range_match and not any(m.start() < range_match.start() for m in bound_matches):
        low, high = sorted((float(range_match.group(1)), float(range_match.group(2))))
        return ParsedThreshold(minimum=low, maximum=high)

    if parsed.minimum is None and parsed.maximum is None:
        return None
    if parsed.minimum is not None and parsed.maximum is not None:
        if _no_value_between(parsed):
            parsed.either_or = True
        elif _joined_by_or(lowered, min_match, max_match):
            # "≥ 18 or ≤ 75" admits every value
            return None
    return parsed


def _no_value_between(parsed: ParsedThreshold) -> bool:
    if parsed.minimum > parsed.maximum:
        return True
    return parsed.minimum == parsed.maximum and not (parsed.min_inclusive and parsed.max_inclusive)


def _joined_by_or(text: str, min_match, max_match) -> bool:
    first, second = sorted((min_match, max_match), key=lambda m: m.start())
    return re.search(r"\bor\b", text[first.end():second.start()]) is not None


def timeframe_to_weeks(timeframe: Optional[Timeframe], conversions: Dict[str, float]) -> float:
    """Convert a timeframe to weeks. Unknown units are taken as weeks."""
    if timeframe is None or timeframe.amount is None:
        return 0.0
    unit = normalize_term(timeframe.unit or "weeks")
    factor = conversions.get(unit)
    if factor is None and unit.endswith("s"):
        factor = conversions.get(unit[:-1])
    if factor is None:
        factor = conversions.get(unit + "s", 1.0)
    return timeframe.amount * factor


def timeframe_matches(
    criterion_timeframe: Optional[Timeframe],
    patient_timeframe: Optional[Timeframe],
    conversions: Dict[str, float],
) -> bool:
    """
    Compare a patient timeframe against a criterion timeframe.

    No criterion timeframe means no restriction. A criterion timeframe with no
    patient timeframe fails. Relations: within/before require patient <=
    criterion, after/for require patient >= criterion; anything else fails.
    """
    if criterion_timeframe is None:
        return True
    if patient_timeframe is None:
        return False

    criterion_weeks = timeframe_to_weeks(criterion_timeframe, conversions)
    patient_weeks = timeframe_to_weeks(patient_timeframe, conversions)
    relation = normalize_term(criterion_timeframe.relation)

    if relation in (TimeRelation.WITHIN.value, TimeRelation.BEFORE.value):
        return patient_weeks <= criterion_weeks
    elif relation in (TimeRelation.AFTER.value, TimeRelation.FOR.value):
        return patient_weeks >= criterion_weeks
    return False


def severity_level(label: Optional[str], levels: Dict[str, int]) -> int:
    return levels.get(normalize_term(label), DEFAULT_SEVERITY_LEVEL)


def severity_matches(required: Optional[str], actual: Optional[str], levels: Dict[str, int]) -> bool:
    """Ordinal comparison: the patient must be at least as severe as required."""
    if not required or normalize_term(required) == "none_specified":
        return True
    if not actual or normalize_term(actual) == "none_specified":
        return False
    return severity_level(actual, levels) >= severity_level(required, levels)
