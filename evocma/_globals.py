from typing import Final

# Relative floor for the eigenvalues of the covariance matrix after decomposition.
EIGENVALUE_FLOOR: Final[float] = 1e-20
# Default upper limit for the condition number of the covariance matrix.
CONDITION_LIMIT: Final[float] = 1e14
# Tolerance for the sum of the recombination weights.
WEIGHT_SUM_TOLERANCE: Final[float] = 1e-10
NONFINITE_POLICIES: Final[tuple] = ("penalize", "raise")
