"""Benchmark function module."""
import argparse
import logging
from typing import Callable, Dict, Optional

import numpy as np

from ..objective import FunctionObjective, Objective

TermFunction = Callable[[np.ndarray], np.ndarray]


def sphere_terms(x: np.ndarray) -> np.ndarray:
    """
    Terms of the sphere function: continuous, convex, separable, differentiable, unimodal.

    Global minimum 0 at x = 0.

    Parameters
    ----------
    x : numpy.ndarray
        The coordinates.

    Returns
    -------
    numpy.ndarray
        One term per coordinate, x_i^2.
    """
    return np.asarray(x, dtype=float) ** 2


def ellipsoid_terms(x: np.ndarray) -> np.ndarray:
    """
    Terms of the ellipsoid function, a sphere with condition number 1e6.

    Global minimum 0 at x = 0.

    Parameters
    ----------
    x : numpy.ndarray
        The coordinates.

    Returns
    -------
    numpy.ndarray
        One term per coordinate, 10^(6 (i-1)/(N-1)) x_i^2.
    """
    x = np.asarray(x, dtype=float)
    n = x.shape[0]
    scales = 10 ** (6 * np.arange(n) / (n - 1)) if n > 1 else np.ones(1)
    return scales * x**2


def rosenbrock_terms(x: np.ndarray) -> np.ndarray:
    """
    Terms of the Rosenbrock function. This function has a narrow minimum inside a parabola-shaped valley.

    Global minimum 0 at x = (1, ..., 1). Needs N >= 2.

    Parameters
    ----------
    x : numpy.ndarray
        The coordinates.

    Returns
    -------
    numpy.ndarray
        N - 1 terms, 100 (x_i^2 - x_{i+1})^2 + (1 - x_i)^2.
    """
    x = np.asarray(x, dtype=float)
    return 100 * (x[:-1] ** 2 - x[1:]) ** 2 + (1 - x[:-1]) ** 2


def rastrigin_terms(x: np.ndarray) -> np.ndarray:
    """
    Terms of the Rastrigin function: continuous, non-convex, separable, differentiable, multimodal.

    Global minimum 0 at x = 0.

    Parameters
    ----------
    x : numpy.ndarray
        The coordinates.

    Returns
    -------
    numpy.ndarray
        One term per coordinate, 10 + x_i^2 - 10 cos(2 pi x_i).
    """
    x = np.asarray(x, dtype=float)
    return 10 + x**2 - 10 * np.cos(2 * np.pi * x)


def quadratic_form(matrix: np.ndarray) -> Callable[[np.ndarray], float]:
    """
    Get the quadratic form x^T A x for a symmetric positive definite matrix A.

    Parameters
    ----------
    matrix : numpy.ndarray
        The matrix A.

    Returns
    -------
    Callable[[numpy.ndarray], float]
        The quadratic form.
    """
    matrix = np.asarray(matrix, dtype=float)

    def function(x: np.ndarray) -> float:
        return float(x @ matrix @ x)

    return function


def random_positive_definite(dimension: int, condition: float, rng: np.random.Generator) -> np.ndarray:
    """
    Draw a random rotation of a diagonal matrix with log-uniformly spaced eigenvalues in [1, condition].

    Parameters
    ----------
    dimension : int
        The matrix dimension.
    condition : float
        The condition number.
    rng : numpy.random.Generator
        The random number generator.

    Returns
    -------
    numpy.ndarray
        The symmetric positive definite matrix.
    """
    rotation, _ = np.linalg.qr(rng.standard_normal((dimension, dimension)))
    eigenvalues = condition ** np.linspace(0, 1, dimension)
    matrix = rotation @ np.diag(eigenvalues) @ rotation.T
    return (matrix + matrix.T) / 2


BENCHMARKS: Dict[str, TermFunction] = {
    "sphere": sphere_terms,
    "ellipsoid": ellipsoid_terms,
    "rosenbrock": rosenbrock_terms,
    "rastrigin": rastrigin_terms,
}


def _partial_sum(terms: TermFunction, indices: np.ndarray) -> Callable[[np.ndarray], float]:
    """Sum of the given terms only."""

    def function(x: np.ndarray) -> float:
        return float(np.sum(terms(x)[indices]))

    return function


def get_objective(fname: str, dimension: int, num_subfunctions: int = 1) -> Objective:
    """
    Get a benchmark objective split into sub-functions.

    The terms of the benchmark are distributed over ``num_subfunctions`` contiguous chunks, so that the sum of all
    sub-functions equals the benchmark function.

    Parameters
    ----------
    fname : str
        The function name.
    dimension : int
        The number of dimensions.
    num_subfunctions : int, optional
        The number of sub-functions. Default is 1.

    Returns
    -------
    Objective
        The decomposed objective.

    Raises
    ------
    ValueError
        If the function is unknown or cannot be split into that many sub-functions.
    """
    if fname not in BENCHMARKS:
        raise ValueError(f"Function {fname} undefined, choose from {sorted(BENCHMARKS)}.")
    terms = BENCHMARKS[fname]
    num_terms = terms(np.zeros(dimension)).shape[0]
    if not 1 <= num_subfunctions <= num_terms:
        raise ValueError(f"{fname} in {dimension} dimensions has {num_terms} terms, cannot split into {num_subfunctions}.")
    chunks = np.array_split(np.arange(num_terms), num_subfunctions)
    return FunctionObjective(*[_partial_sum(terms, chunk) for chunk in chunks])


def parse_arguments(args: Optional[list] = None) -> argparse.Namespace:
    """
    Set up argument parser for CMA-ES optimization of simple mathematical functions.

    Parameters
    ----------
    args : list, optional
        The arguments to parse. Default is ``sys.argv``.

    Returns
    -------
    Namespace
        The namespace of all parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="Simple CMA-ES example",
        description="Set up and run a CMA-ES optimization of mathematical functions.",
    )
    parser.add_argument("--function", type=str, choices=sorted(BENCHMARKS), default="sphere")  # Function to optimize
    parser.add_argument("--dimension", type=int, default=10)  # Problem dimension
    parser.add_argument("--subfunctions", type=int, default=1)  # Number of sub-functions
    parser.add_argument("--generations", type=int, default=0)  # Maximum number of generations, 0 for unbounded
    parser.add_argument("--mean", type=float, default=0.5)  # Initial mean in every dimension
    parser.add_argument("--sigma", type=float, default=0.3)  # Initial step size
    parser.add_argument("--pop_size", type=int, default=None)  # Population size lambda
    parser.add_argument("--tolflat", type=float, default=1e-12)  # Flat-fitness tolerance
    parser.add_argument("--tolhist", type=float, default=1e-13)  # Fitness-history tolerance
    parser.add_argument("--timeout", type=float, default=None)  # Wall-clock limit in seconds
    parser.add_argument("--seed", type=int, default=0)  # Seed for the random number generator
    parser.add_argument("--logging_interval", type=int, default=10)
    parser.add_argument("--logging_level", type=int, default=logging.INFO)
    parser.add_argument("--log_file", type=str, default=None)
    return parser.parse_args(args)
