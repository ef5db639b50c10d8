import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog
from mpi4py import MPI

from . import benchmark_functions

__all__ = [
    "RankFilter",
    "benchmark_functions",
    "set_logger_config",
]

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


class RankFilter(logging.Filter):
    """
    Let records pass on the root rank of ``MPI.COMM_WORLD`` only. Warnings and errors always pass.

    Attributes
    ----------
    all_ranks : bool
        If True, records pass on every rank.
    rank : int
        The rank of this process in ``MPI.COMM_WORLD``.

    Methods
    -------
    filter()
        Decide whether a record is logged.
    """

    def __init__(self, all_ranks: bool = False) -> None:
        """
        Initialize a rank filter.

        Parameters
        ----------
        all_ranks : bool, optional
            A flag for letting records pass on every rank. Default is False.
        """
        super().__init__()
        self.all_ranks = all_ranks
        self.rank = MPI.COMM_WORLD.Get_rank()

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Decide whether a record is logged.

        Parameters
        ----------
        record : logging.LogRecord
            The record to check.

        Returns
        -------
        bool
            True if the record is logged on this rank.
        """
        return self.all_ranks or self.rank == 0 or record.levelno >= logging.WARNING


def set_logger_config(
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    log_to_stdout: bool = True,
    log_rank: bool = False,
    colors: bool = True,
    all_ranks: bool = False,
) -> logging.Logger:
    """
    Set up the ``evocma`` logger. Should only need to be done once.

    Every rank runs the same optimizer, so by default only rank 0 reports progress.

    Parameters
    ----------
    level : int
        The default level for logging. Default is ``logging.INFO``.
    log_file : str | Path, optional
        The file to save the log to.
    log_to_stdout : bool
        A flag indicating if the log should be printed on stdout. Default is True.
    log_rank : bool
        A flag for prepending the MPI rank to the logging message. Default is False.
    colors : bool
        A flag for using colored logs on stdout. Default is True.
    all_ranks : bool
        A flag for logging below warning level on all ranks instead of rank 0 only. Default is False.

    Returns
    -------
    logging.Logger
        The configured package logger.
    """
    rank = f"{MPI.COMM_WORLD.Get_rank()}:" if log_rank else ""
    logger = logging.getLogger("evocma")
    logger.handlers.clear()
    logger.propagate = False
    rank_filter = RankFilter(all_ranks)
    plain = f"{rank}[%(asctime)s][%(name)s][%(levelname)s] - %(message)s"

    if log_to_stdout:
        std_handler = logging.StreamHandler(stream=sys.stdout)
        if colors:
            std_handler.setFormatter(
                colorlog.ColoredFormatter(
                    fmt=f"{rank}[%(cyan)s%(asctime)s%(reset)s][%(blue)s%(name)s%(reset)s]"
                    f"[%(log_color)s%(levelname)s%(reset)s] - %(message)s",
                    reset=True,
                    log_colors=LOG_COLORS,
                )
            )
        else:
            std_handler.setFormatter(logging.Formatter(plain))
        std_handler.addFilter(rank_filter)
        logger.addHandler(std_handler)
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(filename=log_file)
        file_handler.setFormatter(logging.Formatter(plain))
        file_handler.addFilter(rank_filter)
        logger.addHandler(file_handler)
    logger.setLevel(level)
    return logger
