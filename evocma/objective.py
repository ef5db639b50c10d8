import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Sequence

import numpy as np

from ._globals import NONFINITE_POLICIES
from .errors import ConfigurationError, EvaluationError
from .population import Candidate

log = logging.getLogger(__name__)  # Get logger instance.


class Objective(ABC):
    """
    Base class for objectives minimized by the CMA-ES optimizer.

    An objective is decomposed into one or more sub-functions. The fitness of a point is the sum of all sub-function
    values at that point. Any concrete objective only has to provide these two operations.
    """

    @property
    @abstractmethod
    def num_subfunctions(self) -> int:
        """The number of sub-functions (at least one)."""
        ...

    @abstractmethod
    def evaluate(self, x: np.ndarray, index: int) -> float:
        """
        Evaluate one sub-function.

        Parameters
        ----------
        x : numpy.ndarray
            The coordinates, shape (N,).
        index : int
            The index of the sub-function in ``[0, num_subfunctions)``.

        Returns
        -------
        float
            The value of the sub-function at ``x``.
        """
        ...


class FunctionObjective(Objective):
    """
    Objective built from plain callables, one per sub-function.

    Examples
    --------
    >>> sphere = FunctionObjective(lambda x: float(np.sum(x**2)))
    >>> split = FunctionObjective(lambda x: x[0] ** 2, lambda x: float(np.sum(x[1:] ** 2)))
    """

    def __init__(self, *functions: Callable[[np.ndarray], float]) -> None:
        """
        Initialize an objective from callables.

        Parameters
        ----------
        functions : Callable[[numpy.ndarray], float]
            The sub-functions.

        Raises
        ------
        ConfigurationError
            If no sub-function is given or one of them is not callable.
        """
        if len(functions) == 0:
            raise ConfigurationError("An objective needs at least one sub-function.")
        for function in functions:
            if not callable(function):
                raise ConfigurationError(f"Sub-function {function!r} is not callable.")
        self.functions: List[Callable[[np.ndarray], float]] = list(functions)

    @property
    def num_subfunctions(self) -> int:
        """The number of sub-functions."""
        return len(self.functions)

    def evaluate(self, x: np.ndarray, index: int) -> float:
        """Evaluate the ``index``-th callable at ``x``."""
        return self.functions[index](x)


class ObjectiveAdapter:
    """
    Turn a decomposed objective into one fitness value per candidate.

    The fitness is the sum of all sub-function values. A non-finite sub-function value makes the candidate the worst
    possible one (fitness +inf) so it cannot destabilize the generation, unless the adapter is told to raise.

    Attributes
    ----------
    count_eval : int
        The number of candidates evaluated.
    count_nonfinite : int
        The number of candidates that received a non-finite sub-function value.
    nonfinite_policy : str
        ``"penalize"`` or ``"raise"``.
    objective : Objective
        The decomposed objective.
    """

    def __init__(self, objective: Objective, nonfinite_policy: str = "penalize") -> None:
        """
        Wrap an objective.

        Parameters
        ----------
        objective : Objective
            The objective to wrap.
        nonfinite_policy : str, optional
            ``"penalize"`` to assign +inf to candidates with non-finite values, ``"raise"`` to raise an
            ``EvaluationError``. Default is ``"penalize"``.

        Raises
        ------
        ConfigurationError
            If the objective does not provide at least one sub-function or the policy is unknown.
        """
        if not hasattr(objective, "num_subfunctions") or not hasattr(objective, "evaluate"):
            raise ConfigurationError(f"{objective!r} does not provide `num_subfunctions` and `evaluate`.")
        if int(objective.num_subfunctions) < 1:
            raise ConfigurationError(f"Objective must have at least one sub-function, got {objective.num_subfunctions}.")
        if nonfinite_policy not in NONFINITE_POLICIES:
            raise ConfigurationError(f"Non-finite policy must be one of {NONFINITE_POLICIES}, got {nonfinite_policy!r}.")
        self.objective = objective
        self.nonfinite_policy = nonfinite_policy
        self.count_eval = 0
        self.count_nonfinite = 0

    def __call__(self, x: np.ndarray) -> float:
        """
        Compute the total fitness of a point.

        Parameters
        ----------
        x : numpy.ndarray
            The coordinates, shape (N,).

        Returns
        -------
        float
            The sum of all sub-function values, or +inf if one of them is not finite.

        Raises
        ------
        EvaluationError
            If a sub-function value is not finite and the policy is ``"raise"``.
        """
        self.count_eval += 1
        total = 0.0
        for index in range(self.objective.num_subfunctions):
            value = float(self.objective.evaluate(x, index))
            if not np.isfinite(value):
                self.count_nonfinite += 1
                if self.nonfinite_policy == "raise":
                    raise EvaluationError(f"Sub-function {index} returned {value} at {x}.")
                log.debug(f"Sub-function {index} returned {value}, assigning fitness +inf.")
                return float("inf")
            total += value
        if not np.isfinite(total):  # Finite parts can still overflow in the sum.
            self.count_nonfinite += 1
            if self.nonfinite_policy == "raise":
                raise EvaluationError(f"Sum of sub-functions overflowed at {x}.")
            return float("inf")
        return total

    def evaluate_candidates(self, candidates: Sequence[Candidate]) -> None:
        """
        Evaluate candidates in the given order and store their fitness and evaluation times.

        Parameters
        ----------
        candidates : Sequence[Candidate]
            The candidates to evaluate.
        """
        for candidate in candidates:
            start_time = time.time()  # Start evaluation timer.
            candidate.loss = self(candidate.position.copy())
            candidate.evaltime = time.time()  # Stop evaluation timer.
            candidate.evalperiod = candidate.evaltime - start_time
