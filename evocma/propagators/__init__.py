"""This package bundles all classes that are used as propagators in the CMA-ES optimization routine."""

from .base import Propagator, SelectMin
from .cmaes import BasicCMA, CMAAdapter, CMAParameter, CMAPropagator

__all__ = [
    "Propagator",
    "SelectMin",
    "CMAAdapter",
    "CMAParameter",
    "CMAPropagator",
    "BasicCMA",
]
