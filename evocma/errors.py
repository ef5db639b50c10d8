"""Exceptions raised by the CMA-ES optimizer."""


class EvoCMAError(Exception):
    """Base class for all errors raised by ``evocma``."""


class ConfigurationError(EvoCMAError, ValueError):
    """Raised for invalid optimizer settings, e.g., a non-positive dimension or inconsistent recombination weights."""


class EvaluationError(EvoCMAError, ArithmeticError):
    """
    Raised when a sub-function of the objective returns a non-finite value.

    With the default ``"penalize"`` policy this error is handled locally and the candidate is assigned a fitness of
    +inf. It only reaches the caller when the optimizer is configured with ``nonfinite_policy="raise"``.
    """


class NumericalError(EvoCMAError, ArithmeticError):
    """Raised when the search distribution can no longer be represented, e.g., the covariance matrix is broken."""
