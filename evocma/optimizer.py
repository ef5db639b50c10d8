import logging
import random
import time
from typing import Callable, List, Optional, Tuple

import numpy as np
from mpi4py import MPI

from .config import CMAConfig
from .errors import ConfigurationError, EvaluationError, NumericalError
from .objective import Objective, ObjectiveAdapter
from .population import Candidate
from .propagators import BasicCMA, CMAAdapter, CMAParameter, CMAPropagator
from .stopping import Status, StoppingCriteria

log = logging.getLogger(__name__)  # Get logger instance.


class CMAOptimizer:
    """
    Minimize a decomposed objective with CMA-ES.

    Each generation is sampled, evaluated, ranked, and used to adapt the search distribution before the stopping
    criteria are checked. Evaluations of one generation can be spread over the ranks of an MPI communicator; all ranks
    run the same optimizer with the same seed and therefore hold identical search states.

    Attributes
    ----------
    best : Candidate, optional
        The best candidate observed in the last run.
    comm : MPI.Comm
        The communicator whose ranks share the evaluations of each generation.
    config : CMAConfig
        The optimizer configuration.
    count_eval : int
        The number of objective evaluations in the last run.
    propagator : CMAPropagator
        The CMA-ES propagator sampling candidates and adapting the search state.
    rng : random.Random
        The separate random number generator for the optimization.
    status : Status
        The state of the last run.
    stopping : StoppingCriteria, optional
        The stopping criteria of the last run.

    Methods
    -------
    optimize()
        Run CMA-ES on an objective until a stopping criterion is met.
    summarize()
        Log and return the best result of the last run.
    """

    def __init__(
        self,
        config: CMAConfig,
        rng: Optional[random.Random] = None,
        comm: MPI.Comm = MPI.COMM_SELF,
        adapter: Optional[CMAAdapter] = None,
    ) -> None:
        """
        Initialize an optimizer.

        Parameters
        ----------
        config : CMAConfig
            The validated optimizer configuration.
        rng : random.Random, optional
            The separate random number generator for the optimization. Seed it for reproducible runs.
        comm : MPI.Comm, optional
            The communicator used for parallel evaluation. Default is ``MPI.COMM_SELF``, i.e., sequential.
        adapter : CMAAdapter, optional
            The adaptation strategy. Default is ``BasicCMA``.

        Raises
        ------
        ConfigurationError
            If ``config`` is not a ``CMAConfig``.
        """
        if not isinstance(config, CMAConfig):
            raise ConfigurationError(f"Expected a `CMAConfig`, got {type(config)}.")
        self.config = config
        self.rng = rng if rng is not None else random.Random()
        self.comm = comm
        self.propagator = CMAPropagator(adapter if adapter is not None else BasicCMA(), config, rng=self.rng)
        self.best: Optional[Candidate] = None
        self.status = Status.RUNNING
        self.stopping: Optional[StoppingCriteria] = None
        self.count_eval = 0

    @property
    def par(self) -> CMAParameter:
        """The current search state."""
        return self.propagator.par

    @property
    def generation(self) -> int:
        """The number of generations of the last run."""
        return self.propagator.par.generation

    def optimize(
        self,
        objective: Objective,
        x: Optional[np.ndarray] = None,
        callback: Optional[Callable[[CMAParameter, List[Candidate]], Optional[bool]]] = None,
    ) -> Tuple[float, Status]:
        """
        Run CMA-ES until a stopping criterion is met.

        Parameters
        ----------
        objective : Objective
            The objective to minimize.
        x : numpy.ndarray, optional
            A caller-owned float buffer of length N. If given, it overrides the configured initial mean and is
            overwritten with the best coordinates found.
        callback : Callable[[CMAParameter, List[Candidate]], bool | None], optional
            Called after each generation's update with the search state and the evaluated generation. A truthy return
            value cancels the run.

        Returns
        -------
        float
            The best fitness observed across all generations.
        Status
            The terminal state.

        Raises
        ------
        ConfigurationError
            If the objective or the buffer is malformed.
        """
        adapter = ObjectiveAdapter(objective, self.config.nonfinite_policy)
        initial_mean = self._check_buffer(x)
        par = self.propagator.reset(initial_mean)
        self.stopping = StoppingCriteria(self.config)
        self.best = None
        start_time = time.time()

        if self.comm.rank == 0:
            log.info(
                f"Starting CMA-ES with {self.config} on {self.comm.size} rank(s), "
                f"{adapter.objective.num_subfunctions} sub-function(s)."
            )
        while not self.stopping.status.terminal:
            population = self.propagator.sample()
            self._evaluate(population, adapter)
            self._update_best(population)
            try:
                self.propagator(population)
            except NumericalError as e:
                log.warning(f"Generation {par.generation}: {e} Stopping with best candidate so far.")
                self.stopping.fail(str(e))
                break
            log.debug(
                f"Generation {par.generation}: best {min(ind.loss for ind in population):.6e}, "
                f"sigma {par.sigma:.3e}, condition {par.condition_number:.3e}, h_sig {par.h_sig}"
            )
            self.stopping.check(population, par.generation, self._cancel_reason(callback, population, start_time))
            if par.generation % self.config.logging_interval == 0 and self.comm.rank == 0:
                log.info(
                    f"Generation {par.generation}: best fitness {self.best.loss:.6e}, sigma {par.sigma:.3e}, "
                    f"{par.count_eval} evaluations"
                )

        self.status = self.stopping.status
        self.count_eval = par.count_eval
        if self.comm.rank == 0:
            log.info(
                f"OPTIMIZATION DONE after {par.generation} generations: {self.status.name} ({self.stopping.reason})."
            )
        assert self.best is not None
        if x is not None:
            x[:] = self.best.position
        return self.best.loss, self.status

    def _check_buffer(self, x: Optional[np.ndarray]) -> Optional[np.ndarray]:
        """Validate the caller-owned coordinate buffer and return the starting mean it holds, if any."""
        if x is None:
            return None
        if not isinstance(x, np.ndarray) or not np.issubdtype(x.dtype, np.floating):
            raise ConfigurationError("Coordinate buffer must be a float numpy array.")
        if x.shape != (self.config.problem_dimension,):
            raise ConfigurationError(
                f"Coordinate buffer must have shape ({self.config.problem_dimension},), got {x.shape}."
            )
        if not np.all(np.isfinite(x)):
            raise ConfigurationError("Starting point in coordinate buffer must be finite.")
        return x.astype(float)

    def _evaluate(self, population: List[Candidate], adapter: ObjectiveAdapter) -> None:
        """
        Evaluate a generation, possibly spread over the ranks of the communicator.

        Candidate k is evaluated on rank k mod size. Results are exchanged and written back by sampling index, so the
        ranking does not depend on the number of ranks. If the objective raises on some rank, the error is re-raised
        there and every other rank raises an ``EvaluationError``, so no rank is left waiting in a collective.

        Parameters
        ----------
        population : List[evocma.population.Candidate]
            The generation in sampling order.
        adapter : ObjectiveAdapter
            The objective adapter computing fitness values.

        Raises
        ------
        EvaluationError
            If the objective failed on another rank.
        """
        if self.comm.size == 1:
            adapter.evaluate_candidates(population)
            return
        local = population[self.comm.rank :: self.comm.size]
        error: Optional[Exception] = None
        try:
            adapter.evaluate_candidates(local)
        except Exception as e:
            error = e
        message = None if error is None else f"{type(error).__name__}: {error}"
        gathered = self.comm.allgather(
            (message, [(ind.index, ind.loss, ind.evaltime, ind.evalperiod) for ind in local])
        )
        if error is not None:
            raise error
        failures = [(rank, failure) for rank, (failure, _) in enumerate(gathered) if failure is not None]
        if failures:
            rank, message = failures[0]
            raise EvaluationError(f"Objective evaluation failed on rank {rank}: {message}")
        for _, chunk in gathered:
            for index, loss, evaltime, evalperiod in chunk:
                population[index].loss = loss
                population[index].evaltime = evaltime
                population[index].evalperiod = evalperiod

    def _update_best(self, population: List[Candidate]) -> None:
        """Keep track of the best candidate ever observed. Earlier candidates win ties."""
        for ind in population:
            if self.best is None or ind.loss < self.best.loss:
                self.best = ind

    def _cancel_reason(
        self,
        callback: Optional[Callable[[CMAParameter, List[Candidate]], Optional[bool]]],
        population: List[Candidate],
        start_time: float,
    ) -> Optional[str]:
        """Determine whether the run should be cancelled between generations, consistently on all ranks."""
        reason = None
        if callback is not None and callback(self.propagator.par, population):
            reason = "callback requested stop"
        elif self.config.timeout is not None and time.time() - start_time > self.config.timeout:
            reason = f"timeout of {self.config.timeout} s exceeded"
        if self.comm.size > 1:
            reason = self.comm.bcast(reason, root=0)
        return reason

    def summarize(self) -> Optional[Candidate]:
        """
        Get the best result of the last run.

        Returns
        -------
        Candidate, optional
            The best candidate, None if nothing was run yet.
        """
        if self.best is None:
            return None
        if self.comm.rank == 0:
            log.info(
                "###########\n# SUMMARY #\n###########\n"
                f"Status: {self.status.name}\n"
                f"Generations: {self.generation}, evaluations: {self.count_eval}\n"
                f"Top result: {self.best}"
            )
        return self.best
