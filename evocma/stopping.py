import enum
import logging
from collections import deque
from typing import Deque, List, Optional

import numpy as np

from .config import CMAConfig
from .population import Candidate

log = logging.getLogger(__name__)  # Get logger instance.


class Status(enum.Enum):
    """State of an optimization run. Every state except ``RUNNING`` is terminal."""

    RUNNING = "running"
    CONVERGED_FLAT_FITNESS = "converged_flat_fitness"
    CONVERGED_HISTORY = "converged_history"
    MAX_GENERATIONS_REACHED = "max_generations_reached"
    NUMERICAL_FAILURE = "numerical_failure"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        """Whether the run is over."""
        return self is not Status.RUNNING


class StoppingCriteria:
    """
    Decide after each generation whether the optimization halts.

    Starts in ``Status.RUNNING``. Once a terminal state is reached, it is kept.

    Attributes
    ----------
    best_history : Deque[float]
        The best fitness of each of the most recent generations.
    config : CMAConfig
        The optimizer configuration providing tolerances, window length, and generation limit.
    reason : str
        A human-readable description of why the run stopped.
    status : Status
        The current state.
    """

    def __init__(self, config: CMAConfig) -> None:
        """
        Initialize the stopping criteria in the running state.

        Parameters
        ----------
        config : CMAConfig
            The optimizer configuration.
        """
        self.config = config
        self.status = Status.RUNNING
        self.reason = ""
        self.best_history: Deque[float] = deque(maxlen=config.history_length)

    def _transition(self, status: Status, reason: str) -> Status:
        if self.status is Status.RUNNING:
            self.status = status
            self.reason = reason
            log.debug(f"Stopping criteria: RUNNING -> {status.name} ({reason}).")
        return self.status

    def fail(self, reason: str) -> Status:
        """Stop because the search distribution broke down."""
        return self._transition(Status.NUMERICAL_FAILURE, reason)

    def cancel(self, reason: str) -> Status:
        """Stop on request, e.g., on timeout."""
        return self._transition(Status.CANCELLED, reason)

    def check(self, population: List[Candidate], generation: int, cancel_reason: Optional[str] = None) -> Status:
        """
        Check all criteria for a completely evaluated and updated generation.

        Parameters
        ----------
        population : List[evocma.population.Candidate]
            The evaluated candidates of the generation.
        generation : int
            The number of generations completed so far.
        cancel_reason : str, optional
            If given, a stop was requested for this reason.

        Returns
        -------
        Status
            The state after the check.
        """
        if self.status.terminal:
            return self.status
        losses = [float(ind.loss) for ind in population]
        best = min(losses)
        self.best_history.append(best)

        fitness_range = max(losses) - best  # NaN if all candidates are infinite.
        if fitness_range < self.config.flat_fitness_tolerance:
            return self._transition(
                Status.CONVERGED_FLAT_FITNESS,
                f"fitness range {fitness_range:.3e} < {self.config.flat_fitness_tolerance:.1e}",
            )
        if len(self.best_history) == self.best_history.maxlen:
            history = np.array(self.best_history)
            if not np.any(np.isfinite(history)):
                return self._transition(
                    Status.CONVERGED_HISTORY, f"no finite fitness in the last {len(history)} generations"
                )
            with np.errstate(invalid="ignore"):
                spread = float(np.std(history))
            if spread < self.config.history_tolerance:
                return self._transition(
                    Status.CONVERGED_HISTORY,
                    f"std of best fitness over {len(self.best_history)} generations {spread:.3e} "
                    f"< {self.config.history_tolerance:.1e}",
                )
        if 0 < self.config.max_generations <= generation:
            return self._transition(Status.MAX_GENERATIONS_REACHED, f"{generation} generations completed")
        if cancel_reason is not None:
            return self.cancel(cancel_reason)
        return self.status
