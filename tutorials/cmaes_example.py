"""Simple example script using CMA-ES."""
import random

import numpy as np
from mpi4py import MPI

from evocma import CMAConfig, CMAOptimizer
from evocma.utils import set_logger_config
from evocma.utils.benchmark_functions import get_objective, parse_arguments

if __name__ == "__main__":
    comm = MPI.COMM_WORLD

    if comm.rank == 0:
        print(
            "######################################################\n"
            "# EVOCMA: Covariance Matrix Adaptation of Objectives #\n"
            "######################################################\n"
        )

    config = parse_arguments()

    # Set up separate logger for the optimization.
    set_logger_config(
        level=config.logging_level,  # Logging level
        log_file=config.log_file,  # Logging path
        log_to_stdout=True,  # Print log on stdout.
        log_rank=False,  # Do not prepend MPI rank to logging messages.
        colors=True,  # Use colors.
    )

    # Same seed on all ranks, so that every rank holds the same search state.
    rng = random.Random(config.seed)
    objective = get_objective(config.function, config.dimension, config.subfunctions)

    cma_config = CMAConfig(
        problem_dimension=config.dimension,
        initial_mean=config.mean,
        initial_sigma=config.sigma,
        max_generations=config.generations,
        flat_fitness_tolerance=config.tolflat,
        history_tolerance=config.tolhist,
        pop_size=config.pop_size,
        timeout=config.timeout,
        logging_interval=config.logging_interval,
    )
    optimizer = CMAOptimizer(cma_config, rng=rng, comm=comm)

    # Run optimization and print summary of results.
    x = np.full(config.dimension, config.mean)
    best_fitness, status = optimizer.optimize(objective, x)
    optimizer.summarize()
    if comm.rank == 0:
        print(f"{status.name}: f({x}) = {best_fitness}")
