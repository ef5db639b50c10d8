import random
from typing import List, Optional, Union

import numpy as np

from ..population import Candidate


class Propagator:
    """
    Abstract base class for all propagators, i.e., evolutionary operators.

    A propagator takes a collection of candidates and uses them to breed or select a new collection of candidates.

    Attributes
    ----------
    offspring : int
        The number of output candidates.
    parents : int
        The number of input candidates (-1 for any).
    rng : random.Random
        The separate random number generator for the optimization.

    Methods
    -------
    __call__()
        Apply the propagator.
    """

    def __init__(self, parents: int = 0, offspring: int = 0, rng: Optional[random.Random] = None) -> None:
        """
        Initialize a propagator with given parameters.

        Parameters
        ----------
        parents : int, optional
            The number of input candidates (-1 for any). Default is 0 for abstract base class.
        offspring : int, optional
            The number of output candidates. Default is 0 for abstract base class.
        rng : random.Random, optional
            The separate random number generator for the optimization.

        Raises
        ------
        ValueError
            If the number of offspring is zero.
        """
        if offspring == 0:
            raise ValueError("Propagator has to sire more than 0 offspring.")
        self.offspring = offspring  # Number of offspring candidates
        self.parents = parents  # Number of parent candidates
        if rng is None:
            rng = random.Random()
        self.rng = rng  # Random number generator

    def __call__(self, inds: List[Candidate]) -> Union[List[Candidate], Candidate]:
        """
        Apply the propagator (not implemented for abstract base class).

        Parameters
        ----------
        inds : List[evocma.population.Candidate]
            The input candidates the propagator is applied to.

        Returns
        -------
        List[evocma.population.Candidate] | evocma.population.Candidate
            The candidate(s) obtained by applying the propagator.

        Raises
        ------
        NotImplementedError
            Whenever called (abstract base class method).
        """
        raise NotImplementedError()


def _rank_key(ind: Candidate) -> tuple:
    # NaN never compares, rank it behind everything including +inf.
    loss = float(ind.loss)
    is_nan = bool(np.isnan(loss))
    return (is_nan, 0.0 if is_nan else loss, ind.index)


class SelectMin(Propagator):
    """
    Select a specified number of best performing candidates in terms of their losses, i.e., with the smallest losses.

    Sorting is stable: candidates with equal loss keep their sampling order. The selected candidates are assigned their
    generation-local rank (0 for the best).

    Notes
    -----
    The ``SelectMin`` class inherits all methods and attributes from the ``Propagator`` class.

    See Also
    --------
    :class:`Propagator` : The parent class.
    """

    def __init__(self, offspring: int) -> None:
        """
        Initialize an elitist selection propagator.

        Parameters
        ----------
        offspring : int
            The number of offspring (candidates to be selected).
        """
        super().__init__(-1, offspring)

    def __call__(self, inds: List[Candidate]) -> List[Candidate]:
        """
        Apply the elitist-selection propagator.

        Parameters
        ----------
        inds : List[evocma.population.Candidate]
            The input candidates the propagator is applied to.

        Returns
        -------
        List[evocma.population.Candidate]
            The ``offspring`` best candidates in ascending order of loss.

        Raises
        ------
        ValueError
            If more candidates than put in shall be selected.
        """
        if len(inds) < self.offspring:
            raise ValueError(
                f"Has to have at least {self.offspring} candidates to select the {self.offspring} best ones."
            )
        ranked = sorted(inds, key=_rank_key)
        for rank, ind in enumerate(ranked):
            ind.rank = rank
        return ranked[: self.offspring]
