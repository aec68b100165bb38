"""Exceptions raised by the estimators."""


class EstimationError(ValueError):
    """Base class for failures of a single estimate."""


class FitError(EstimationError):
    """The OLS design matrix of the labeled subset is rank-deficient."""


class DegreesOfFreedomError(EstimationError):
    """A t-based interval was requested with no residual degrees of freedom."""


class DimensionMismatchError(EstimationError):
    """Covariate vectors differ in length across records."""
