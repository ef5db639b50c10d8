from decimal import Decimal

import numpy as np


class Candidate:
    """A candidate represents one sampled point of the search distribution in a given generation."""

    def __init__(self, position: np.ndarray, generation: int = -1, index: int = -1) -> None:
        """
        Initialize a candidate with given parameters.

        Parameters
        ----------
        position : numpy.ndarray
            The coordinates of the candidate, shape (N,).
        generation : int
            The generation the candidate was sampled in (-1 if unset).
        index : int
            The sampling index within its generation (-1 if unset).
        """
        self.position = np.asarray(position, dtype=float).ravel()
        self.generation = generation
        self.index = index  # Sampling order, used to break ties between equal fitness values.
        self.rank = -1  # Generation-local rank after selection
        self.loss: float = float("inf")
        self.evaltime = float("inf")  # evaluation time
        self.evalperiod = 0.0  # evaluation duration

    def __len__(self) -> int:
        """Give the dimension of the search space."""
        return self.position.shape[0]

    def __getitem__(self, i: int) -> float:
        """Return the i-th coordinate."""
        return float(self.position[i])

    def __repr__(self) -> str:
        """Return string representation of a ``Candidate`` instance."""
        rep = [f"{Decimal(float(x)):.2E}" for x in self.position]
        if np.isfinite(self.loss):
            loss_str = f"{Decimal(float(self.loss)):.2E}"
        else:
            loss_str = f"{self.loss}"
        return f"[{rep}, loss {loss_str}, generation {self.generation}, index {self.index}, rank {self.rank}]"

    def __eq__(self, other: object) -> bool:
        """
        Define equality operator ``==`` for class ``Candidate``.

        Checks for equality of coordinates, loss, generation, and sampling index. Evaluation times are not considered.

        Parameters
        ----------
        other : Candidate
            Other candidate to compare candidate under consideration to.

        Returns
        -------
        bool
            True if candidates are the same, false if not.

        Raises
        ------
        TypeError
            If other is not an instance or subclass of ``Candidate``.
        """
        if not isinstance(other, self.__class__):
            raise TypeError(f"{other} not an instance of `Candidate` but {type(other)}.")
        return (
            np.array_equal(self.position, other.position)
            and (self.loss == other.loss or (np.isnan(self.loss) and np.isnan(other.loss)))
            and self.generation == other.generation
            and self.index == other.index
        )

    __hash__ = None  # type: ignore
