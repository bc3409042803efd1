"""Error taxonomy for the price versioning engine.

All errors are raised synchronously to the caller. No retries happen here;
retry policy belongs to whatever transport sits above the core.
"""

from __future__ import annotations


class PricingError(Exception):
    """Base class for all price engine errors."""


class ConflictError(PricingError):
    """Mutation clashes with the versioned record set.

    Raised when a second pending record would be created, when a new
    effective_from does not lie strictly in the future, or when a record
    that has already become active is targeted for modification or removal.
    """


class ValidationError(PricingError, ValueError):
    """Input is malformed (no amounts, non-positive rate, bad subject key)."""


class NotFoundError(PricingError, LookupError):
    """A collaborator has nothing to answer with (e.g. no exchange rate)."""
