import numpy as np
import pytest

from evocma import CMAConfig, ConfigurationError
from evocma.config import default_population_size, default_weights


@pytest.fixture(params=[1, 2, 5, 10, 40])
def problem_dimension(request: pytest.FixtureRequest) -> int:
    """Define problem dimensions as used in tests."""
    return request.param


@pytest.mark.mpi_skip
def test_defaults(problem_dimension: int) -> None:
    """
    Test the derived defaults of the configuration.

    Parameters
    ----------
    problem_dimension : int
        The number of dimensions in the search space.
    """
    config = CMAConfig(problem_dimension)
    assert config.lambd == 4 + int(np.floor(3 * np.log(problem_dimension)))
    assert config.mu == config.lambd // 2
    assert config.weights.shape == (config.mu,)
    assert np.sum(config.weights) == pytest.approx(1.0)
    assert np.all(config.weights > 0)
    assert np.all(np.diff(config.weights) <= 0)
    assert np.array_equal(config.initial_mean, np.full(problem_dimension, 0.5))
    assert config.initial_sigma == 0.3
    assert config.max_generations == 0
    assert config.flat_fitness_tolerance == 1e-12
    assert config.history_tolerance == 1e-13
    assert config.history_length == 10 + int(np.ceil(30 * problem_dimension / config.lambd))
    assert 1 <= config.mu_eff <= config.mu


@pytest.mark.mpi_skip
def test_default_helpers() -> None:
    """Test population size and weights for a known case."""
    assert default_population_size(1) == 4
    assert default_population_size(10) == 10
    weights = default_weights(2)
    expected = np.array([np.log(2.5), np.log(2.5) - np.log(2)])
    assert weights == pytest.approx(expected / expected.sum())


@pytest.mark.mpi_skip
def test_initial_mean_vector() -> None:
    """Test that a per-dimension initial mean is accepted and a scalar is broadcast."""
    config = CMAConfig(3, initial_mean=[1.0, -2.0, 3.0])
    assert np.array_equal(config.initial_mean, np.array([1.0, -2.0, 3.0]))
    config = CMAConfig(3, initial_mean=-1)
    assert np.array_equal(config.initial_mean, np.full(3, -1.0))


@pytest.mark.mpi_skip
def test_explicit_population() -> None:
    """Test user-defined population size, parents, and weights."""
    config = CMAConfig(4, pop_size=12, num_parents=3, weights=[0.5, 0.3, 0.2])
    assert config.lambd == 12
    assert config.mu == 3
    assert config.mu_eff == pytest.approx(1 / (0.25 + 0.09 + 0.04))


@pytest.mark.mpi_skip
@pytest.mark.parametrize(
    "kwargs",
    [
        {"problem_dimension": 0},
        {"problem_dimension": -3},
        {"problem_dimension": 2.5},
        {"problem_dimension": True},
        {"problem_dimension": 3, "initial_mean": [0.0, 1.0]},
        {"problem_dimension": 2, "initial_mean": [0.0, np.nan]},
        {"problem_dimension": 2, "initial_sigma": 0.0},
        {"problem_dimension": 2, "initial_sigma": -1.0},
        {"problem_dimension": 2, "initial_sigma": np.inf},
        {"problem_dimension": 2, "max_generations": -1},
        {"problem_dimension": 2, "flat_fitness_tolerance": -1e-3},
        {"problem_dimension": 2, "history_tolerance": np.nan},
        {"problem_dimension": 2, "pop_size": 1},
        {"problem_dimension": 2, "pop_size": 6, "num_parents": 7},
        {"problem_dimension": 2, "pop_size": 6, "num_parents": 0},
        {"problem_dimension": 2, "pop_size": 6, "num_parents": 2, "weights": [0.5, 0.3]},
        {"problem_dimension": 2, "pop_size": 6, "num_parents": 2, "weights": [0.3, 0.7]},
        {"problem_dimension": 2, "pop_size": 6, "num_parents": 2, "weights": [1.2, -0.2]},
        {"problem_dimension": 2, "pop_size": 6, "num_parents": 3, "weights": [0.5, 0.5]},
        {"problem_dimension": 2, "history_length": 1},
        {"problem_dimension": 2, "condition_limit": 0.5},
        {"problem_dimension": 2, "timeout": 0.0},
        {"problem_dimension": 2, "nonfinite_policy": "ignore"},
        {"problem_dimension": 2, "logging_interval": 0},
    ],
)
def test_invalid_configuration(kwargs: dict) -> None:
    """
    Test that invalid settings fail on construction.

    Parameters
    ----------
    kwargs : dict
        The invalid settings.
    """
    with pytest.raises(ConfigurationError):
        CMAConfig(**kwargs)


@pytest.mark.mpi_skip
def test_configuration_error_is_value_error() -> None:
    """Test that configuration errors can be caught as ``ValueError``."""
    with pytest.raises(ValueError):
        CMAConfig(0)
