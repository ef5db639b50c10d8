import random

import numpy as np
import pytest

from evocma import CMAConfig, NumericalError
from evocma.propagators import BasicCMA, CMAPropagator


@pytest.fixture(params=[1, 2, 7])
def problem_dimension(request: pytest.FixtureRequest) -> int:
    """Define problem dimensions as used in tests."""
    return request.param


@pytest.mark.mpi_skip
def test_learning_rates(problem_dimension: int) -> None:
    """
    Test that the strategy parameters are within their admissible ranges.

    Parameters
    ----------
    problem_dimension : int
        The number of dimensions in the search space.
    """
    config = CMAConfig(problem_dimension)
    par = CMAPropagator(BasicCMA(), config, rng=random.Random(0)).par
    assert 0 < par.c_sigma < 1
    assert 0 < par.c_c <= 1
    assert 0 < par.c_1 < 1
    assert 0 <= par.c_mu <= 1 - par.c_1
    assert par.d_sigma >= 1
    n = problem_dimension
    assert par.chi_n == pytest.approx(np.sqrt(n) * (1 - 1 / (4 * n) + 1 / (21 * n**2)))
    assert par.mean.shape == (n, 1)
    assert np.allclose(par.covariance_matrix, np.diag(np.diag(par.covariance_matrix)))


@pytest.mark.mpi_skip
def test_sample(problem_dimension: int) -> None:
    """
    Test sampling x_k = mean + sigma * B * D * z_k from the optimizer-owned random stream.

    Parameters
    ----------
    problem_dimension : int
        The number of dimensions in the search space.
    """
    config = CMAConfig(problem_dimension, initial_mean=1.5, initial_sigma=0.1)
    propagator = CMAPropagator(BasicCMA(), config, rng=random.Random(42))
    seed = random.Random(42).randint(a=0, b=np.iinfo(np.int32).max)
    z = np.random.default_rng(seed=seed).standard_normal((problem_dimension, config.lambd))

    par = propagator.par
    expected = par.mean + par.sigma * par.b_matrix @ (par.d_matrix.reshape(-1, 1) * z)
    population = propagator.sample()
    assert len(population) == config.lambd
    assert [c.index for c in population] == list(range(config.lambd))
    assert all(c.generation == 1 for c in population)
    assert np.allclose(np.column_stack([c.position for c in population]), expected, rtol=0, atol=1e-15)
    assert par.count_eval == config.lambd
    assert par.generation == 1


@pytest.mark.mpi_skip
def test_closed_form_one_dimensional() -> None:
    """Test that for N = 1 the update reduces to the scalar CMA-ES equations."""
    config = CMAConfig(1, initial_mean=0.5, initial_sigma=0.3)
    propagator = CMAPropagator(BasicCMA(), config, rng=random.Random(3))
    par = propagator.par

    w = config.weights
    mu_eff = 1 / np.sum(w**2)
    c_s = (mu_eff + 2) / (mu_eff + 6)
    d_s = 1 + 2 * max(0, np.sqrt((mu_eff - 1) / 2) - 1) + c_s
    c_c = (4 + mu_eff) / (5 + 2 * mu_eff)
    c_1 = 2 / (2.3**2 + mu_eff)
    c_mu = min(1 - c_1, 2 * (mu_eff - 2 + 1 / mu_eff) / (9 + mu_eff))
    chi_1 = 1 - 1 / 4 + 1 / 21

    mean, sigma, variance, p_s, p_c = 0.5, 0.3, 1.0, 0.0, 0.0
    for generation in range(1, 6):
        population = propagator.sample()
        xs = np.array([c[0] for c in population])
        for candidate in population:
            candidate.loss = (candidate[0] - 0.1) ** 2
        propagator(population)

        order = sorted(range(len(xs)), key=lambda k: (xs[k] - 0.1) ** 2)
        selected = xs[order[: config.mu]]
        new_mean = float(np.sum(w * selected))
        y = (new_mean - mean) / sigma
        p_s = (1 - c_s) * p_s + np.sqrt(c_s * (2 - c_s) * mu_eff) * y / np.sqrt(variance)
        h_sig = p_s**2 / (1 - (1 - c_s) ** (2 * generation)) < 2 + 4 / 2
        p_c = (1 - c_c) * p_c + h_sig * np.sqrt(c_c * (2 - c_c) * mu_eff) * y
        steps = (selected - mean) / sigma
        variance = (
            (1 - c_1 - c_mu) * variance
            + c_1 * (p_c**2 + (1 - h_sig) * c_c * (2 - c_c) * variance)
            + c_mu * np.sum(w * steps**2)
        )
        sigma = sigma * np.exp(c_s / d_s * (abs(p_s) / chi_1 - 1))
        mean = new_mean

        assert par.mean[0, 0] == pytest.approx(mean, rel=1e-12)
        assert par.p_sigma[0, 0] == pytest.approx(p_s, rel=1e-10, abs=1e-14)
        assert par.p_c[0, 0] == pytest.approx(p_c, rel=1e-10, abs=1e-14)
        assert par.h_sig == h_sig
        assert par.covariance_matrix[0, 0] == pytest.approx(variance, rel=1e-10)
        assert par.d_matrix[0] == pytest.approx(np.sqrt(variance), rel=1e-10)
        assert par.sigma == pytest.approx(sigma, rel=1e-10)


@pytest.mark.mpi_skip
def test_mean_is_weighted_recombination() -> None:
    """Test that the new mean is the weighted sum of the mu best candidates and the steps are recorded."""
    config = CMAConfig(3, pop_size=6, num_parents=3, weights=[0.5, 0.3, 0.2])
    propagator = CMAPropagator(BasicCMA(), config, rng=random.Random(5))
    old_mean = propagator.par.mean.copy()
    population = propagator.sample()
    for candidate in population:
        candidate.loss = float(np.sum(candidate.position**2))
    selected = propagator(population)

    assert [c.rank for c in selected] == [0, 1, 2]
    arx = np.column_stack([c.position for c in selected])
    assert np.allclose(propagator.par.mean, arx @ np.array([[0.5], [0.3], [0.2]]))
    assert np.allclose(propagator.par.old_mean, old_mean)
    assert np.allclose(propagator.par.steps, arx - old_mean)


@pytest.mark.mpi_skip
def test_lazy_decomposition() -> None:
    """Test that the covariance matrix is updated every generation but decomposed only periodically."""
    config = CMAConfig(200)
    propagator = CMAPropagator(BasicCMA(), config, rng=random.Random(11))
    par = propagator.par
    threshold = par.lambd / (par.c_1 + par.c_mu) / par.problem_dimension / 10
    assert threshold > par.lambd  # Not due in every generation.

    decompositions = []
    for _ in range(12):
        population = propagator.sample()
        for candidate in population:
            candidate.loss = float(np.sum(candidate.position**2))
        before = par.covariance_matrix.copy()
        eigen_eval = par.eigen_eval
        propagator(population)
        assert not np.array_equal(before, par.covariance_matrix)
        decompositions.append(par.eigen_eval != eigen_eval)
    assert any(decompositions)
    assert not all(decompositions)


@pytest.mark.mpi_skip
def test_decompose_in_each_generation() -> None:
    """Test that the decomposition always matches the covariance matrix if requested every generation."""
    config = CMAConfig(5, decompose_in_each_generation=True)
    propagator = CMAPropagator(BasicCMA(), config, rng=random.Random(2))
    par = propagator.par
    for _ in range(10):
        population = propagator.sample()
        for candidate in population:
            candidate.loss = float(np.sum(np.arange(1, 6) * candidate.position**2))
        propagator(population)
        rebuilt = par.b_matrix @ np.diag(par.d_matrix**2) @ par.b_matrix.T
        assert np.allclose(rebuilt, par.covariance_matrix)
        assert np.allclose(par.covariance_inv_sqrt @ par.covariance_inv_sqrt @ par.covariance_matrix, np.eye(5))


@pytest.mark.mpi_skip
def test_eigenvalue_clipping() -> None:
    """Test that negative eigenvalues are clipped so that the covariance matrix stays positive definite."""
    config = CMAConfig(3, condition_limit=None)
    par = CMAPropagator(BasicCMA(), config, rng=random.Random(0)).par
    rotation, _ = np.linalg.qr(np.random.default_rng(seed=9).standard_normal((3, 3)))
    par.covariance_matrix = rotation @ np.diag([-1e-3, 0.5, 2.0]) @ rotation.T
    par.decompose()
    assert np.all(par.d_matrix > 0)
    assert np.all(np.diff(par.d_matrix) >= 0)
    assert np.min(np.linalg.eigvalsh(par.covariance_matrix)) >= -1e-12
    assert par.d_matrix[-1] ** 2 == pytest.approx(2.0)


@pytest.mark.mpi_skip
def test_condition_limit() -> None:
    """Test that the condition number of the covariance matrix is limited."""
    config = CMAConfig(2, condition_limit=1e4)
    par = CMAPropagator(BasicCMA(), config, rng=random.Random(0)).par
    par.covariance_matrix = np.diag([1e-8, 1.0])
    par.decompose()
    assert par.condition_number == pytest.approx(1e4, rel=1e-6)
    assert np.linalg.cond(par.covariance_matrix) == pytest.approx(1e4, rel=1e-6)


@pytest.mark.mpi_skip
@pytest.mark.parametrize(
    "matrix",
    [
        np.array([[np.nan, 0.0], [0.0, 1.0]]),
        np.array([[np.inf, 0.0], [0.0, 1.0]]),
        -np.eye(2),
        np.zeros((2, 2)),
    ],
)
def test_numerical_failure(matrix: np.ndarray) -> None:
    """
    Test that broken covariance matrices raise a ``NumericalError``.

    Parameters
    ----------
    matrix : numpy.ndarray
        The broken covariance matrix.
    """
    config = CMAConfig(2, decompose_in_each_generation=True)
    par = CMAPropagator(BasicCMA(), config, rng=random.Random(0)).par
    with pytest.raises(NumericalError):
        par.update_covariance_matrix(matrix)


@pytest.mark.mpi_skip
def test_step_size_failure() -> None:
    """Test that a degenerated step size raises a ``NumericalError``."""
    config = CMAConfig(2)
    par = CMAPropagator(BasicCMA(), config, rng=random.Random(0)).par
    par.sigma = np.inf
    with pytest.raises(NumericalError):
        BasicCMA.update_step_size(par)


@pytest.mark.mpi_skip
def test_reset_keeps_random_stream() -> None:
    """Test that resetting the search state starts a new distribution but continues the random stream."""
    config = CMAConfig(2)
    propagator = CMAPropagator(BasicCMA(), config, rng=random.Random(8))
    first = propagator.sample()
    par = propagator.reset(np.array([3.0, -3.0]))
    assert par is propagator.par
    assert par.generation == 0
    assert np.array_equal(par.mean, np.array([[3.0], [-3.0]]))
    second = propagator.sample()
    assert not np.allclose(first[0].position - 0.5, second[0].position - np.array([3.0, -3.0]))
