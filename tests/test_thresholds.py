"""
Unit tests for numeric, timeframe and severity comparisons.

Tests:
- measurement_meets_threshold operators
- Free-text threshold parsing (min, max, range, double negative)
- Timeframe conversion and relations
- Severity ordinals
"""

import pytest

from backend.models.criteria import Timeframe
from backend.eligibility.thresholds import (
    measurement_meets_threshold,
    parse_numeric_threshold,
    safe_float,
    severity_matches,
    timeframe_matches,
    timeframe_to_weeks,
)


class TestMeasurementThreshold:
    """Structured threshold comparisons."""

    @pytest.mark.parametrize("value,threshold,op,expected", [
        (10, 10, ">=", True),
        (9.9, 10, ">=", False),
        (10, 10, ">", False),
        (5, 10, "<=", True),
        (10, 10, "<", False),
        (10.005, 10, "=", True),
        (10, 10, "!=", False),
    ])
    def test_operators(self, value, threshold, op, expected):
        """Test each supported operator."""
        assert measurement_meets_threshold(value, threshold, op) is expected

    def test_no_threshold_is_no_restriction(self):
        """Test a missing threshold always passes."""
        assert measurement_meets_threshold(1, None) is True

    def test_default_operator(self):
        """Test the default operator is >=."""
        assert measurement_meets_threshold(3, 3, None) is True

    def test_non_numeric_value(self):
        """Test non-numeric values fail."""
        assert measurement_meets_threshold("high", 3) is False
        assert safe_float(True) is None
        assert safe_float("nan") is None


class TestParseNumericThreshold:
    """Free-text threshold recovery."""

    def test_at_least(self):
        """Test 'at least N' yields an inclusive minimum."""
        parsed = parse_numeric_threshold("Patients at least 18 years old")
        assert parsed.minimum == 18
        assert parsed.min_inclusive is True
        assert parsed.maximum is None

    def test_years_or_older(self):
        """Test postfix minimum phrasing."""
        parsed = parse_numeric_threshold("18 years of age or older")
        assert parsed.minimum == 18

    def test_symbol_max(self):
        """Test '≤ N' yields an inclusive maximum."""
        parsed = parse_numeric_threshold("weighing ≤ 18 kg")
        assert parsed.maximum == 18
        assert parsed.max_inclusive is True
        assert parsed.minimum is None
        assert parsed.double_negative is False

    def test_strict_less(self):
        """Test '< N' yields an exclusive maximum."""
        parsed = parse_numeric_threshold("BMI < 40")
        assert parsed.maximum == 40
        assert parsed.max_inclusive is False

    def test_no_more_than_is_not_a_minimum(self):
        """Test 'no more than N' is read as a maximum only."""
        parsed = parse_numeric_threshold("no more than 75 years")
        assert parsed.maximum == 75
        assert parsed.minimum is None

    def test_range(self):
        """Test 'N to M' range."""
        parsed = parse_numeric_threshold("Aged 18 to 75 years")
        assert (parsed.minimum, parsed.maximum) == (18, 75)

    def test_between(self):
        """Test 'between N and M' range."""
        parsed = parse_numeric_threshold("between 18.5 and 30 kg/m2")
        assert (parsed.minimum, parsed.maximum) == (18.5, 30)

    def test_double_negative(self):
        """Test 'must not weigh < N' states the requirement weight >= N."""
        parsed = parse_numeric_threshold("Subjects must not weigh < 30 kg")
        assert parsed.double_negative is True
        assert parsed.minimum == 30
        assert parsed.min_inclusive is True
        assert parsed.is_satisfied(71) is True
        assert parsed.is_satisfied(29) is False

    def test_unparseable(self):
        """Test text without a numeric bound returns None."""
        assert parse_numeric_threshold("Adequate organ function") is None
        assert parse_numeric_threshold("") is None
        assert parse_numeric_threshold(None) is None


class TestTimeframes:
    """Timeframe normalization and relations."""

    CONVERSIONS = {"days": 1 / 7, "weeks": 1.0, "months": 4.33, "years": 52.0}

    def test_to_weeks(self):
        """Test unit conversion, including singular units."""
        assert timeframe_to_weeks(Timeframe(amount=2, unit="years"), self.CONVERSIONS) == 104
        assert timeframe_to_weeks(Timeframe(amount=1, unit="month"), self.CONVERSIONS) == 4.33
        assert timeframe_to_weeks(None, self.CONVERSIONS) == 0.0

    def test_within(self):
        """Test 'within' requires the patient timeframe to be shorter."""
        criterion = Timeframe(amount=6, unit="months", relation="within")
        assert timeframe_matches(criterion, Timeframe(amount=8, unit="weeks"), self.CONVERSIONS) is True
        assert timeframe_matches(criterion, Timeframe(amount=1, unit="years"), self.CONVERSIONS) is False

    def test_for(self):
        """Test 'for' requires the patient timeframe to be longer."""
        criterion = Timeframe(amount=3, unit="months", relation="for")
        assert timeframe_matches(criterion, Timeframe(amount=1, unit="years"), self.CONVERSIONS) is True

    def test_missing_sides(self):
        """Test no criterion timeframe passes and no patient timeframe fails."""
        assert timeframe_matches(None, None, self.CONVERSIONS) is True
        assert timeframe_matches(Timeframe(amount=1, relation="within"), None, self.CONVERSIONS) is False

    def test_unknown_relation(self):
        """Test an unknown relation fails."""
        criterion = Timeframe(amount=1, unit="weeks", relation="around")
        assert timeframe_matches(criterion, Timeframe(amount=1), self.CONVERSIONS) is False


class TestSeverity:
    """Ordinal severity comparison."""

    LEVELS = {"none": 0, "mild": 1, "moderate": 2, "severe": 3}

    def test_ordinal(self):
        """Test the patient must be at least as severe as required."""
        assert severity_matches("moderate", "severe", self.LEVELS) is True
        assert severity_matches("severe", "mild", self.LEVELS) is False

    def test_unspecified(self):
        """Test none_specified requirements always pass."""
        assert severity_matches("none_specified", "mild", self.LEVELS) is True
        assert severity_matches("moderate", None, self.LEVELS) is False


class TestParseCompoundPhrasing:
    """Either/or bounds and ranges next to explicit bounds."""

    @pytest.mark.parametrize("text,maximum,minimum", [
        ("Age under 18 or over 75 years", 18, 75),
        ("Age < 18 or > 75", 18, 75),
        ("younger than 12 or older than 65 years", 12, 65),
    ])
    def test_either_or(self, text, maximum, minimum):
        """Test two bounds joined by 'or' are read as outside the gap."""
        parsed = parse_numeric_threshold(text)
        assert parsed.either_or is True
        assert (parsed.maximum, parsed.minimum) == (maximum, minimum)
        assert parsed.is_satisfied(maximum - 1) is True
        assert parsed.is_satisfied(minimum + 1) is True
        assert parsed.is_satisfied((maximum + minimum) / 2) is False
        assert parsed.is_satisfied(maximum) is False
        assert parsed.is_satisfied(minimum) is False
        assert f"outside {maximum:g}-{minimum:g}" in parsed.describe()

    def test_either_or_inclusive(self):
        """Test inclusive either/or bounds keep their edges."""
        parsed = parse_numeric_threshold("weight ≤ 40 kg or ≥ 120 kg")
        assert parsed.either_or is True
        assert parsed.is_satisfied(40) is True
        assert parsed.is_satisfied(120) is True
        assert parsed.is_satisfied(80) is False

    def test_or_admitting_everything(self):
        """Test 'or' between bounds that overlap is not trusted."""
        assert parse_numeric_threshold("BMI ≥ 18 or ≤ 40") is None

    @pytest.mark.parametrize("text,minimum,maximum", [
        ("BMI ≥ 18.5 for 6-12 months", 18.5, None),
        ("at least 2 flares in the past 6-12 months", 2, None),
        ("Aged 18 to 75 years with BMI < 40", 18, 75),
        ("between 18 and 65 years, at least 3 visits", 18, 65),
    ])
    def test_range_next_to_bound(self, text, minimum, maximum):
        """Test the phrase that comes first decides between a range and a bound."""
        parsed = parse_numeric_threshold(text)
        assert parsed.either_or is False
        assert (parsed.minimum, parsed.maximum) == (minimum, maximum)

    def test_conjoined_bounds(self):
        """Test bounds joined by 'and' stay a range the value must fall within."""
        parsed = parse_numeric_threshold("at least 18 years and no more than 75 years")
        assert parsed.either_or is False
        assert (parsed.minimum, parsed.maximum) == (18, 75)
        assert parsed.is_satisfied(40) is True
        assert parsed.is_satisfied(80) is False
