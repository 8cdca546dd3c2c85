"""
Error types raised by the investment model.

Recoverable outcomes (no eligible technology, no eligible site, failed permit
negotiation) are not errors: they are logged and reported through the
investment decision. The types below mark fatal preconditions.
"""


class InvestmentModelError(Exception):
    """Base class for all fatal investment model errors."""


class ConfigurationError(InvestmentModelError, ValueError):
    """A parameter value makes a calculation undefined (e.g. a zero normalization delta)."""


class MissingReferenceDataError(InvestmentModelError, LookupError):
    """Reference data required by a decision cannot be resolved (e.g. no authority for a province)."""
