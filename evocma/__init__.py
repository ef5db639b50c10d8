from importlib.metadata import PackageNotFoundError, version

try:
    # Change here if project is renamed and does not equal the package name
    __version__ = version(__name__)
except PackageNotFoundError:
    __version__ = "unknown"
finally:
    del version, PackageNotFoundError

from . import propagators
from .config import CMAConfig
from .errors import ConfigurationError, EvaluationError, EvoCMAError, NumericalError
from .objective import FunctionObjective, Objective, ObjectiveAdapter
from .optimizer import CMAOptimizer
from .population import Candidate
from .stopping import Status, StoppingCriteria
from .utils import set_logger_config

__all__ = [
    "CMAConfig",
    "CMAOptimizer",
    "Candidate",
    "ConfigurationError",
    "EvaluationError",
    "EvoCMAError",
    "FunctionObjective",
    "NumericalError",
    "Objective",
    "ObjectiveAdapter",
    "Status",
    "StoppingCriteria",
    "propagators",
    "set_logger_config",
]
