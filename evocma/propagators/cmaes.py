import logging
import random
from typing import List, Optional, Tuple

import numpy as np

from .._globals import EIGENVALUE_FLOOR
from ..config import CMAConfig
from ..errors import NumericalError
from ..population import Candidate
from .base import Propagator, SelectMin

log = logging.getLogger(__name__)  # Get logger instance.


class CMAParameter:
    """
    Handle and store all CMA-related constants/variables and strategy parameters, i.e., the search state.

    Attributes
    ----------
    b_matrix : numpy.ndarray
        The B matrix in the covariance matrix decomposition (eigenvectors as columns).
    c_1 : float
        The learning rate for the rank-one update of the covariance matrix update.
    c_c : float
        The decay rate for evolution path for the rank-one update of the covariance matrix.
    c_mu : float
        The learning rate for the rank-mu update of the covariance matrix update.
    c_sigma : float
        The decay rate of the evolution path for the step-size control.
    chi_n : float
        The expectation value of ||N(0,I)||.
    condition_limit : float, optional
        The maximum allowed condition of the covariance matrix to ensure numerical stability.
    count_eval : int
        The number of candidates sampled.
    covariance_inv_sqrt : numpy.ndarray
        Square root of the inverse of the covariance matrix: C^-1/2 = B*D^(-1)*B^T
    covariance_matrix : numpy.ndarray
        The covariance matrix.
    d_matrix : numpy.ndarray
        The square roots of the eigenvalues of the covariance matrix, sorted in ascending order.
    d_sigma : float
        The damping factor for the step-size control.
    eigen_eval : int
        The number of candidates sampled when the covariance matrix was last decomposed into B and D.
    exploration : bool
        If True decompose covariance matrix for each generation; else decompose covariance matrix only after a certain
        number of candidates sampled.
    generation : int
        The number of generations sampled.
    h_sig : bool
        Whether the rank-one accumulation was active in the last update.
    lambd : int
        The number of candidates considered for each generation.
    mean : numpy.ndarray
        The distribution's mean, shape (N, 1).
    mu : int
        The number of positive recombination weights.
    mu_eff : float
        The variance effective selection mass.
    old_mean : numpy.ndarray
        The mean of the last generation.
    p_c : numpy.ndarray
        The evolution path of the covariance matrix adaptation.
    p_sigma : numpy.ndarray
        The conjugate evolution path of the step-size adaptation.
    problem_dimension : int
        The number of dimensions in the search space.
    sigma : float
        The step size.
    steps : numpy.ndarray
        The steps of the ``mu`` selected candidates from the old mean, shape (N, mu).
    weights : numpy.ndarray
        The recombination weights.

    Methods
    -------
    update_mean()
        Update mean and old mean.
    update_covariance_matrix()
        Update the covariance matrix and, if due, its decomposition.
    decompose()
        Decompose the covariance matrix and refresh B, D, and C^-1/2.
    """

    def __init__(
        self,
        lambd: int,
        mu: int,
        problem_dimension: int,
        weights: np.ndarray,
        mu_eff: float,
        c_c: float,
        c_1: float,
        c_mu: float,
        initial_mean: np.ndarray,
        initial_sigma: float,
        exploration: bool,
        condition_limit: Optional[float] = None,
    ) -> None:
        """
        Instantiate a ``CMAParameter`` object.

        Parameters
        ----------
        lambd : int
            The number of candidates considered for each generation.
        mu : int
            The number of positive recombination weights.
        problem_dimension : int
            The number of dimensions in the search space.
        weights : numpy.ndarray
            The recombination weights.
        mu_eff : float
            The variance effective selection mass.
        c_c : float
            The decay rate for the evolution path for the rank-one update of the covariance matrix.
        c_1 : float
            The learning rate for the rank-one update of the covariance matrix update.
        c_mu : float
            The learning rate for the rank-mu update of the covariance matrix update.
        initial_mean : numpy.ndarray
            The initial mean of the distribution.
        initial_sigma : float
            The initial step size.
        exploration : bool
            If True decompose covariance matrix for each generation (worse runtime); else decompose covariance matrix
            only after a certain number of candidates sampled (better runtime).
        condition_limit : float, optional
            The maximum allowed condition of the covariance matrix.
        """
        self.problem_dimension = problem_dimension
        self.lambd = lambd
        self.mu = mu
        self.weights = weights
        self.mu_eff = mu_eff
        self.c_c = c_c
        self.c_1 = c_1
        self.c_mu = c_mu

        # Step-size control parameters
        self.c_sigma = (mu_eff + 2) / (problem_dimension + mu_eff + 5)
        self.d_sigma = 1 + 2 * max(0, np.sqrt((mu_eff - 1) / (problem_dimension + 1)) - 1) + self.c_sigma

        # Initialize dynamic strategy variables.
        self.p_sigma = np.zeros((problem_dimension, 1))
        self.p_c = np.zeros((problem_dimension, 1))
        self.h_sig = True

        # Prevent equal eigenvalues, hack from https://github.com/CMA-ES/pycma/blob/development/cma/sampler.py
        self.covariance_matrix = np.diag(
            np.ones(problem_dimension) * np.exp((1e-4 / self.problem_dimension) * np.arange(self.problem_dimension))
        )
        self.b_matrix = np.eye(self.problem_dimension)
        # Assume ``self.covariance_matrix`` to be initialized as a diagonal matrix.
        self.d_matrix = np.diag(self.covariance_matrix) ** 0.5
        # Square root of the inverse of the covariance matrix: C^-1/2 = B*D^(-1)*B^T
        self.covariance_inv_sqrt = self.b_matrix @ np.diag(self.d_matrix ** (-1)) @ self.b_matrix.T
        self.condition_limit = condition_limit

        self.mean = np.asarray(initial_mean, dtype=float).reshape((problem_dimension, 1))
        self.sigma = float(initial_sigma)
        # Mean of the last generation
        self.old_mean = self.mean.copy()
        self.steps = np.zeros((problem_dimension, mu))
        self.exploration = exploration

        # Number of candidates sampled when the covariance matrix was last decomposed into B and D.
        self.eigen_eval = 0
        # Number of candidates sampled
        self.count_eval = 0
        self.generation = 0

        # Expectation value of ||N(0,I)||
        self.chi_n = problem_dimension**0.5 * (1 - 1.0 / (4 * problem_dimension) + 1.0 / (21 * problem_dimension**2))

    def update_mean(self, new_mean: np.ndarray) -> None:
        """
        Update mean and old mean property.

        Parameters
        ----------
        new_mean : numpy.ndarray
            The new mean.

        Raises
        ------
        NumericalError
            If the new mean is not finite.
        """
        if not np.all(np.isfinite(new_mean)):
            raise NumericalError("Recombination produced a non-finite mean.")
        self.old_mean = self.mean
        self.mean = new_mean

    def update_covariance_matrix(self, new_covariance_matrix: np.ndarray) -> None:
        """
        Update the covariance matrix.

        Computes new values for ``b_matrix``, ``d_matrix``, and ``covariance_inv_sqrt`` only if a decomposition is due.
        Decomposition of ``covariance_matrix`` is O(n^3), hence the lazy updating of ``b_matrix`` and ``d_matrix``.

        Parameters
        ----------
        new_covariance_matrix : numpy.ndarray
            The new covariance matrix.

        Raises
        ------
        NumericalError
            If the new covariance matrix is not finite or cannot be decomposed.
        """
        if not np.all(np.isfinite(new_covariance_matrix)):
            raise NumericalError("Covariance matrix contains non-finite entries.")
        # Enforce symmetry.
        self.covariance_matrix = np.triu(new_covariance_matrix) + np.triu(new_covariance_matrix, 1).T
        # Update b and d matrix and covariance_inv_sqrt only after certain number of evaluations to ensure O(n^2).
        if self.exploration or (
            self.count_eval - self.eigen_eval > self.lambd / (self.c_1 + self.c_mu) / self.problem_dimension / 10
        ):
            self.eigen_eval = self.count_eval
            self.decompose()

    def decompose(self) -> None:
        """
        Eigen-decomposition of the covariance matrix into eigenvalues (d_matrix) and eigenvectors (columns of b_matrix).

        Eigenvalues below a small positive floor are clipped and the covariance matrix is rebuilt from the clipped
        factors, so it stays positive definite.

        Raises
        ------
        NumericalError
            If the decomposition fails or does not yield a valid positive definite matrix after clipping.
        """
        try:
            eigenvalues, b_matrix = np.linalg.eigh(self.covariance_matrix)
        except np.linalg.LinAlgError as e:
            raise NumericalError(f"Eigen-decomposition of the covariance matrix failed: {e}") from e
        if not (np.all(np.isfinite(eigenvalues)) and np.all(np.isfinite(b_matrix))):
            raise NumericalError("Eigen-decomposition of the covariance matrix is not finite.")
        largest = np.max(eigenvalues)
        if largest <= 0:
            raise NumericalError("Covariance matrix has no positive eigenvalue.")

        floor = EIGENVALUE_FLOOR * largest
        if np.any(eigenvalues < floor):
            log.debug(f"Clipping {np.sum(eigenvalues < floor)} eigenvalue(s) of the covariance matrix to {floor:.3e}.")
            eigenvalues = np.maximum(eigenvalues, floor)
            rebuilt = b_matrix @ np.diag(eigenvalues) @ b_matrix.T
            self.covariance_matrix = (rebuilt + rebuilt.T) / 2
        self.d_matrix = eigenvalues
        self.b_matrix = b_matrix
        self._sort_b_d_matrix()
        if self.condition_limit is not None:
            self._limit_condition(self.condition_limit)
        self.d_matrix = self.d_matrix**0.5
        self.covariance_inv_sqrt = self.b_matrix @ np.diag(self.d_matrix ** (-1)) @ self.b_matrix.T
        # Ensure symmetry.
        self.covariance_inv_sqrt = (self.covariance_inv_sqrt + self.covariance_inv_sqrt.T) / 2
        if not np.all(np.isfinite(self.covariance_inv_sqrt)):
            raise NumericalError("Inverse square root of the covariance matrix is not finite.")

    def _limit_condition(self, limit: float) -> None:
        """
        Limit the condition (ratio of largest to smallest eigenvalue) of the covariance matrix if it exceeds a
        threshold.

        Credits on how to limit the condition: https://github.com/CMA-ES/pycma/blob/development/cma/sampler.py

        Parameters
        ----------
        limit : float
            The threshold for the condition of the matrix.
        """
        if self.d_matrix[-1] / self.d_matrix[0] > limit:
            eps = (self.d_matrix[-1] - limit * self.d_matrix[0]) / (limit - 1)
            log.debug(f"Condition of covariance matrix exceeds {limit:.1e}, adding {eps:.3e} to its diagonal.")
            # Decrease ratio of largest to smallest eigenvalue, absolute difference remains.
            self.covariance_matrix += eps * np.eye(self.problem_dimension)
            self.d_matrix = self.d_matrix + eps

    def _sort_b_d_matrix(self) -> None:
        """Sort columns of ``b_matrix`` and ``d_matrix`` according to the eigenvalues in ``d_matrix``."""
        indices_eig = np.argsort(self.d_matrix)
        self.d_matrix = self.d_matrix[indices_eig]
        self.b_matrix = self.b_matrix[:, indices_eig]

    @property
    def condition_number(self) -> float:
        """The condition number of the covariance matrix as of the last decomposition."""
        return float((self.d_matrix[-1] / self.d_matrix[0]) ** 2)


class CMAAdapter:
    """
    Abstract base class for the adaption of strategy parameters of CMA-ES.

    Strategy class from the viewpoint of the strategy design pattern.

    Methods
    -------
    update_mean()
        Abstract method for updating of mean in CMA-ES variants.
    update_evolution_paths()
        Update the evolution paths of step size and covariance matrix.
    update_covariance_matrix()
        Abstract method for the adaptation of the covariance matrix of CMA-ES variants.
    update_step_size()
        Update step-size in CMA-ES variants.
    compute_learning_rates()
        Compute the learning rates for the CMA-variants.
    """

    def update_mean(self, par: CMAParameter, arx: np.ndarray) -> None:
        """
        Abstract method for updating of mean in CMA-ES variants.

        Parameters
        ----------
        par : CMAParameter
            The parameter object of the CMA-ES propagation.
        arx : numpy.ndarray
            The selected candidates in ascending order of loss, shape (N, mu).

        Raises
        ------
        NotImplementedError
            Whenever called (abstract base class method).
        """
        raise NotImplementedError

    @staticmethod
    def update_evolution_paths(par: CMAParameter) -> None:
        """
        Update the evolution paths from the last mean shift.

        The conjugate path ``p_sigma`` accumulates the mean shift whitened with C^-1/2. The path ``p_c`` accumulates
        the plain mean shift unless ``p_sigma`` is too long, which happens when sigma increases quickly.

        Parameters
        ----------
        par : CMAParameter
            The parameter object of the CMA-ES propagation.
        """
        mean_shift = (par.mean - par.old_mean) / par.sigma
        par.p_sigma = (1 - par.c_sigma) * par.p_sigma + np.sqrt(
            par.c_sigma * (2 - par.c_sigma) * par.mu_eff
        ) * par.covariance_inv_sqrt @ mean_shift
        # Turn off rank-one accumulation when sigma increases quickly.
        par.h_sig = bool(
            np.sum(par.p_sigma**2) / (1 - (1 - par.c_sigma) ** (2 * par.generation)) / par.problem_dimension
            < 2 + 4.0 / (par.problem_dimension + 1)
        )
        par.p_c = (1 - par.c_c) * par.p_c + par.h_sig * np.sqrt(par.c_c * (2 - par.c_c) * par.mu_eff) * mean_shift

    @staticmethod
    def update_step_size(par: CMAParameter) -> None:
        """
        Update step-size in CMA-ES variants by cumulative step-size adaptation.

        Parameters
        ----------
        par : CMAParameter
            The parameter object of the CMA-ES propagation.

        Raises
        ------
        NumericalError
            If the new step size is not positive and finite.
        """
        par.sigma = par.sigma * np.exp((par.c_sigma / par.d_sigma) * (np.linalg.norm(par.p_sigma, ord=2) / par.chi_n - 1))
        if not np.isfinite(par.sigma) or par.sigma <= 0:
            raise NumericalError(f"Step size degenerated to {par.sigma}.")

    def update_covariance_matrix(self, par: CMAParameter) -> None:
        """
        Abstract method for the adaptation of the covariance matrix of CMA-ES variants.

        Parameters
        ----------
        par : CMAParameter
            The parameter object of the CMA-ES propagation.

        Raises
        ------
        NotImplementedError
            Whenever called (abstract base class method).
        """
        raise NotImplementedError

    @staticmethod
    def compute_learning_rates(mu_eff: float, problem_dimension: int) -> Tuple[float, float, float]:
        """
        Compute the learning rates for the CMA-variants.

        Parameters
        ----------
        mu_eff : float
            The variance effective selection mass.
        problem_dimension : int
            The number of dimensions in the search space.

        Returns
        -------
        float
            The decay rate for evolution path for the rank-one update of the covariance matrix, ``c_c``.
        float
            The learning rate for the rank-one update of the covariance matrix update, ``c_1``.
        float
            The learning rate for the rank-mu update of the covariance matrix update, ``c_mu``.
        """
        c_c = (4 + mu_eff / problem_dimension) / (problem_dimension + 4 + 2 * mu_eff / problem_dimension)
        c_1 = 2 / ((problem_dimension + 1.3) ** 2 + mu_eff)
        c_mu = min(
            1 - c_1,
            2 * (mu_eff - 2 + (1 / mu_eff)) / ((problem_dimension + 2) ** 2 + mu_eff),
        )
        return c_c, c_1, c_mu


class BasicCMA(CMAAdapter):
    """
    Adaption of strategy parameters of CMA-ES according to the original CMA-ES algorithm with positive weights.

    Concrete strategy class from the viewpoint of the strategy design pattern.

    Notes
    -----
    The ``BasicCMA`` class inherits all methods and attributes from the ``CMAAdapter`` class.

    See Also
    --------
    :class:`CMAAdapter` : The parent class.
    """

    def update_mean(self, par: CMAParameter, arx: np.ndarray) -> None:
        """
        Recombine the selected candidates into the new mean and record their steps from the old mean.

        Parameters
        ----------
        par : CMAParameter
            The parameter object of the CMA-ES propagation.
        arx : numpy.ndarray
            The selected candidates in ascending order of loss, shape (N, mu).
        """
        par.steps = arx - par.mean
        # Matrix vector multiplication (reshape weights to column vector)
        par.update_mean(arx @ par.weights.reshape(-1, 1))

    def update_covariance_matrix(self, par: CMAParameter) -> None:
        """
        Adapt the covariance matrix of basic CMA-ES by a rank-one and a rank-mu update.

        Parameters
        ----------
        par : CMAParameter
            The parameter object of the CMA-ES propagation.
        """
        # Use ``h_sig`` to compensate the variance loss of a suppressed rank-one accumulation.
        ar_tmp = par.steps / par.sigma
        new_co_matrix = (
            (1 - par.c_1 - par.c_mu) * par.covariance_matrix
            + par.c_1 * (par.p_c @ par.p_c.T + (1 - par.h_sig) * par.c_c * (2 - par.c_c) * par.covariance_matrix)
            + par.c_mu * ar_tmp @ (par.weights * ar_tmp).T
        )
        par.update_covariance_matrix(new_co_matrix)


class CMAPropagator(Propagator):
    """
    CMA-ES propagator.

    Samples generations from the search distribution and uses a ``CMAAdapter`` to adapt mean, step size, and
    covariance matrix, which are stored in a ``CMAParameter`` object. The context class from the viewpoint of the
    strategy design pattern.

    Attributes
    ----------
    adapter : CMAAdapter
        The adaptation strategy of CMA-ES.
    config : CMAConfig
        The optimizer configuration.
    numpy_rng : numpy.random.Generator
        The random stream for sampling, seeded from ``rng``.
    par : CMAParameter
        The current search state.
    rng : random.Random
        The separate random number generator for the optimization.
    select : SelectMin
        Selection operator ranking a generation and returning the ``mu`` best candidates.

    Notes
    -----
    The ``CMAPropagator`` class inherits all methods and attributes from the ``Propagator`` class.

    See Also
    --------
    :class:`Propagator` : The parent class.
    """

    def __init__(self, adapter: CMAAdapter, config: CMAConfig, rng: Optional[random.Random] = None) -> None:
        """
        Instantiate a CMA-ES propagator.

        Parameters
        ----------
        adapter : CMAAdapter
            The adaptation strategy of CMA-ES.
        config : CMAConfig
            The optimizer configuration.
        rng: random.Random, optional
            The separate random number generator for the optimization.
        """
        super().__init__(config.lambd, config.lambd, rng=rng)
        self.adapter = adapter
        self.config = config
        self.numpy_rng = np.random.default_rng(seed=self.rng.randint(a=0, b=np.iinfo(np.int32).max))
        self.select = SelectMin(config.mu)
        self.par = self.reset()

    def reset(self, initial_mean: Optional[np.ndarray] = None) -> CMAParameter:
        """
        Start a fresh search state. The random stream is not reset.

        Parameters
        ----------
        initial_mean : numpy.ndarray, optional
            The initial mean. Default is the configured one.

        Returns
        -------
        CMAParameter
            The new search state.
        """
        config = self.config
        c_c, c_1, c_mu = self.adapter.compute_learning_rates(config.mu_eff, config.problem_dimension)
        self.par = CMAParameter(
            config.lambd,
            config.mu,
            config.problem_dimension,
            config.weights,
            config.mu_eff,
            c_c,
            c_1,
            c_mu,
            config.initial_mean if initial_mean is None else initial_mean,
            config.initial_sigma,
            config.decompose_in_each_generation,
            config.condition_limit,
        )
        return self.par

    def sample(self) -> List[Candidate]:
        """
        Sample a new generation, x_k = mean + sigma * B * D * z_k with z_k ~ N(0, I).

        Returns
        -------
        List[evocma.population.Candidate]
            The ``lambd`` new candidates in sampling order.
        """
        par = self.par
        par.generation += 1
        random_vectors = self.numpy_rng.standard_normal((par.problem_dimension, par.lambd))
        arx = par.mean + par.sigma * par.b_matrix @ (par.d_matrix.reshape(-1, 1) * random_vectors)
        par.count_eval += par.lambd
        return [Candidate(arx[:, k], generation=par.generation, index=k) for k in range(par.lambd)]

    def __call__(self, inds: List[Candidate]) -> List[Candidate]:
        """
        The skeleton of one CMA-ES update using the template method design pattern.

        Ranks the evaluated generation and adapts the strategy parameters. Template methods are ``update_mean``,
        ``update_evolution_paths``, ``update_covariance_matrix``, and ``update_step_size``.

        Parameters
        ----------
        inds: List[evocma.population.Candidate]
            The evaluated candidates of the current generation.

        Returns
        -------
        List[evocma.population.Candidate]
            The ``mu`` selected candidates in ascending order of loss.

        Raises
        ------
        NumericalError
            If the update breaks the search distribution.
        """
        selected = self.select(inds)
        arx = self._transform_candidates_to_matrix(selected)
        self.adapter.update_mean(self.par, arx)
        self.adapter.update_evolution_paths(self.par)
        self.adapter.update_covariance_matrix(self.par)
        self.adapter.update_step_size(self.par)
        return selected

    def _transform_candidates_to_matrix(self, inds: List[Candidate]) -> np.ndarray:
        """
        Take a list of candidates and transform it to a numpy array for easier subsequent computation.

        Parameters
        ----------
        inds : List[evocma.population.Candidate]
            The list of candidates.

        Returns
        -------
        arx : numpy.ndarray
            Array of shape [problem_dimension, len(inds)].
        """
        return np.column_stack([ind.position for ind in inds])
