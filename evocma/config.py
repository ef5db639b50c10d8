import logging
import math
from typing import Optional, Sequence, Union

import numpy as np

from ._globals import CONDITION_LIMIT, NONFINITE_POLICIES, WEIGHT_SUM_TOLERANCE
from .errors import ConfigurationError

log = logging.getLogger(__name__)  # Get logger instance.


def default_population_size(problem_dimension: int) -> int:
    """
    Get the default number of candidates sampled per generation, i.e., 4 + floor(3 ln N).

    Parameters
    ----------
    problem_dimension : int
        The number of dimensions in the search space.

    Returns
    -------
    int
        The population size lambda.
    """
    return 4 + int(np.floor(3 * np.log(problem_dimension)))


def default_weights(mu: int) -> np.ndarray:
    """
    Get the default positive, log-decreasing recombination weights normalized to one.

    Parameters
    ----------
    mu : int
        The number of parents.

    Returns
    -------
    numpy.ndarray
        The recombination weights.
    """
    weights = np.log(mu + 0.5) - np.log(np.arange(1, mu + 1))
    return weights / np.sum(weights)


class CMAConfig:
    """
    Validated settings of a CMA-ES optimization.

    All values are checked on construction; derived quantities (population size, number of parents, recombination
    weights, history window) are computed from the dimension unless given explicitly.

    Attributes
    ----------
    condition_limit : float, optional
        The maximum allowed condition number of the covariance matrix. None disables the limit.
    decompose_in_each_generation : bool
        Whether to decompose the covariance matrix in each generation instead of lazily.
    flat_fitness_tolerance : float
        Stop if the fitness range of a generation falls below this value.
    history_length : int
        The number of generations considered by the fitness-history criterion.
    history_tolerance : float
        Stop if the standard deviation of the best fitness over the history window falls below this value.
    initial_mean : numpy.ndarray
        The initial mean of the search distribution, shape (N,).
    initial_sigma : float
        The initial step size.
    lambd : int
        The number of candidates sampled per generation.
    logging_interval : int
        Log progress every this many generations.
    max_generations : int
        The maximum number of generations, 0 for unbounded.
    mu : int
        The number of parents used for recombination.
    nonfinite_policy : str
        What to do with non-finite objective values: ``"penalize"`` (fitness +inf) or ``"raise"``.
    problem_dimension : int
        The number of dimensions in the search space.
    timeout : float, optional
        Wall-clock time limit in seconds, checked between generations.
    weights : numpy.ndarray
        The recombination weights, shape (mu,).
    """

    def __init__(
        self,
        problem_dimension: int,
        initial_mean: Union[float, Sequence[float], np.ndarray] = 0.5,
        initial_sigma: float = 0.3,
        max_generations: int = 0,
        flat_fitness_tolerance: float = 1e-12,
        history_tolerance: float = 1e-13,
        pop_size: Optional[int] = None,
        num_parents: Optional[int] = None,
        weights: Optional[Union[Sequence[float], np.ndarray]] = None,
        history_length: Optional[int] = None,
        decompose_in_each_generation: bool = False,
        condition_limit: Optional[float] = CONDITION_LIMIT,
        timeout: Optional[float] = None,
        nonfinite_policy: str = "penalize",
        logging_interval: int = 10,
    ) -> None:
        """
        Create and validate an optimizer configuration.

        Parameters
        ----------
        problem_dimension : int
            The number of dimensions in the search space. Must be positive.
        initial_mean : float | Sequence[float] | numpy.ndarray, optional
            The initial mean, either a scalar broadcast to all dimensions or one value per dimension. Default is 0.5.
        initial_sigma : float, optional
            The initial step size. Default is 0.3.
        max_generations : int, optional
            The maximum number of generations, 0 for unbounded. Default is 0.
        flat_fitness_tolerance : float, optional
            The flat-fitness tolerance. Default is 1e-12.
        history_tolerance : float, optional
            The fitness-history tolerance. Default is 1e-13.
        pop_size : int, optional
            The number of candidates per generation. Default is 4 + floor(3 ln N).
        num_parents : int, optional
            The number of parents. Default is floor(lambda / 2).
        weights : Sequence[float] | numpy.ndarray, optional
            Positive, non-increasing recombination weights summing to one. Default are log-decreasing weights.
        history_length : int, optional
            The length of the fitness-history window in generations. Default is 10 + ceil(30 N / lambda).
        decompose_in_each_generation : bool, optional
            If True, decompose the covariance matrix in each generation (worse runtime); else decompose only after a
            certain number of evaluations (better runtime). Default is False.
        condition_limit : float, optional
            The maximum allowed condition number of the covariance matrix. Default is 1e14.
        timeout : float, optional
            The wall-clock time limit in seconds. Default is None, i.e., no limit.
        nonfinite_policy : str, optional
            ``"penalize"`` to assign +inf to candidates with non-finite objective values or ``"raise"`` to raise an
            ``EvaluationError``. Default is ``"penalize"``.
        logging_interval : int, optional
            Log progress every this many generations. Default is 10.

        Raises
        ------
        ConfigurationError
            If any of the settings is invalid.
        """
        if isinstance(problem_dimension, bool) or not isinstance(problem_dimension, (int, np.integer)):
            raise ConfigurationError(f"Problem dimension must be an integer, got {problem_dimension!r}.")
        if problem_dimension <= 0:
            raise ConfigurationError(f"Problem dimension must be positive, got {problem_dimension}.")
        self.problem_dimension = int(problem_dimension)

        mean = np.asarray(initial_mean, dtype=float)
        if mean.ndim == 0:
            mean = np.full(self.problem_dimension, float(mean))
        mean = mean.ravel()
        if mean.shape != (self.problem_dimension,):
            raise ConfigurationError(
                f"Initial mean must be a scalar or have {self.problem_dimension} entries, got {mean.shape[0]}."
            )
        if not np.all(np.isfinite(mean)):
            raise ConfigurationError("Initial mean must be finite.")
        self.initial_mean = mean

        if not np.isfinite(initial_sigma) or initial_sigma <= 0:
            raise ConfigurationError(f"Initial step size must be positive and finite, got {initial_sigma}.")
        self.initial_sigma = float(initial_sigma)

        if max_generations < 0:
            raise ConfigurationError(f"Maximum number of generations must be >= 0, got {max_generations}.")
        self.max_generations = int(max_generations)

        for name, value in (("flat_fitness_tolerance", flat_fitness_tolerance), ("history_tolerance", history_tolerance)):
            if not value >= 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value}.")
        self.flat_fitness_tolerance = float(flat_fitness_tolerance)
        self.history_tolerance = float(history_tolerance)

        # Number of candidates considered for each generation
        self.lambd = int(pop_size) if pop_size is not None else default_population_size(self.problem_dimension)
        if self.lambd < 2:
            raise ConfigurationError(f"Population size must be at least 2, got {self.lambd}.")
        # Number of positive recombination weights
        self.mu = int(num_parents) if num_parents is not None else self.lambd // 2
        if not 1 <= self.mu <= self.lambd:
            raise ConfigurationError(f"Number of parents must be in [1, {self.lambd}], got {self.mu}.")
        self.weights = default_weights(self.mu) if weights is None else np.asarray(weights, dtype=float).ravel()
        self._check_weights()

        self.history_length = (
            int(history_length)
            if history_length is not None
            else 10 + int(math.ceil(30 * self.problem_dimension / self.lambd))
        )
        if self.history_length < 2:
            raise ConfigurationError(f"History length must be at least 2, got {self.history_length}.")

        if condition_limit is not None and not condition_limit > 1:
            raise ConfigurationError(f"Condition limit must be > 1, got {condition_limit}.")
        self.condition_limit = condition_limit
        self.decompose_in_each_generation = bool(decompose_in_each_generation)

        if timeout is not None and not timeout > 0:
            raise ConfigurationError(f"Timeout must be positive, got {timeout}.")
        self.timeout = timeout

        if nonfinite_policy not in NONFINITE_POLICIES:
            raise ConfigurationError(f"Non-finite policy must be one of {NONFINITE_POLICIES}, got {nonfinite_policy!r}.")
        self.nonfinite_policy = nonfinite_policy

        if logging_interval < 1:
            raise ConfigurationError(f"Logging interval must be positive, got {logging_interval}.")
        self.logging_interval = int(logging_interval)
        log.debug(f"Created {self}.")

    def _check_weights(self) -> None:
        """Check that there is one positive weight per parent, weights do not increase with rank, and sum to one."""
        if self.weights.shape != (self.mu,):
            raise ConfigurationError(f"Expected {self.mu} recombination weights, got {self.weights.shape[0]}.")
        if not np.all(np.isfinite(self.weights)) or np.any(self.weights <= 0):
            raise ConfigurationError("Recombination weights must be positive and finite.")
        if np.any(np.diff(self.weights) > 0):
            raise ConfigurationError("Recombination weights must not increase with rank.")
        if abs(np.sum(self.weights) - 1) > WEIGHT_SUM_TOLERANCE:
            raise ConfigurationError(f"Recombination weights must sum to 1, got {np.sum(self.weights)}.")

    @property
    def mu_eff(self) -> float:
        """The variance effective selection mass."""
        return float(np.sum(self.weights) ** 2 / np.sum(self.weights**2))

    def __repr__(self) -> str:
        """Return string representation of a ``CMAConfig`` instance."""
        return (
            f"CMAConfig(N={self.problem_dimension}, lambda={self.lambd}, mu={self.mu}, sigma={self.initial_sigma}, "
            f"max_generations={self.max_generations}, tolflat={self.flat_fitness_tolerance}, "
            f"tolhist={self.history_tolerance}, history_length={self.history_length})"
        )
