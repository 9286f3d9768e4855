"""Exceptions for the eligibility engine."""


class EligibilityError(Exception):
    """Base error for the eligibility engine."""
    pass


class InvalidPatientFactsError(EligibilityError):
    """Matching request carried no usable patient facts."""
    pass


class LookupTableError(EligibilityError):
    """Lookup table file missing or malformed."""
    pass


class SemanticCapabilityUnavailable(EligibilityError):
    """Semantic fallback is not configured or is disabled."""
    pass


class SemanticCapabilityError(EligibilityError):
    """Semantic match call failed or returned malformed data."""
    pass
