"""
Error taxonomy for multiple-imputation pooling.

Every error is a ``ValueError`` subclass: each one signals malformed or
insufficient caller input, detected before any derived arithmetic runs.
"""

from typing import Optional


class PoolingError(ValueError):
    """Base class for all pooling and inference input errors."""

    def __init__(self, message: str, coefficient_name: Optional[str] = None):
        self.message = message
        self.coefficient_name = coefficient_name
        if coefficient_name is not None:
            message = f"{coefficient_name}: {message}"
        super().__init__(message)

    def __reduce__(self):
        return self.__class__, (self.message, self.coefficient_name)


class InsufficientImputations(PoolingError):
    """Fewer than two imputations; between-imputation variance is undefined."""


class DegenerateVariance(PoolingError):
    """Total pooled variance is exactly zero."""


class FractionMissingInfoOutOfRange(DegenerateVariance):
    """Fraction of missing information fell outside [0, 1)."""


class NonPositiveDegreesOfFreedom(PoolingError):
    """An input degrees-of-freedom value is not a positive finite number."""


class InvalidConfidenceLevel(PoolingError):
    """Confidence level is not strictly between 0 and 1."""


class InvalidRecord(PoolingError):
    """A per-imputation record carries an unusable estimate or standard error."""


__all__ = [
    'PoolingError',
    'InsufficientImputations',
    'DegenerateVariance',
    'FractionMissingInfoOutOfRange',
    'NonPositiveDegreesOfFreedom',
    'InvalidConfidenceLevel',
    'InvalidRecord',
]
