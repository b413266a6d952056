"""Logging configuration for the :mod:`subspace` command line."""

from __future__ import annotations

import dataclasses as dc
import logging
import sys
from pathlib import Path

DEFAULT_STATE_DIRECTORY = Path("~/.local/state/cargo-subspace")
LOG_FILE_NAME = "cargo-subspace.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dc.dataclass(frozen=True, slots=True)
class LoggingOptions:
    """Logging switches collected from the command line."""

    verbose: bool = False
    log_to_stdout: bool = False
    log_location: Path | None = None


def log_directory(options: LoggingOptions) -> Path:
    """Return the directory where the log file is written."""
    location = options.log_location
    if location is None:
        location = DEFAULT_STATE_DIRECTORY
    return Path(location).expanduser()


def configure_logging(options: LoggingOptions) -> logging.Handler:
    """Attach a handler for ``options`` to the ``subspace`` logger.

    stdout carries the discovery protocol, so logs go to a file unless
    ``log_to_stdout`` is requested explicitly.
    """
    level = logging.DEBUG if options.verbose else logging.WARNING
    handler: logging.Handler
    if options.log_to_stdout:
        handler = logging.StreamHandler(sys.stdout)
    else:
        directory = log_directory(options)
        directory.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(directory / LOG_FILE_NAME, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    logger = logging.getLogger("subspace")
    logger.setLevel(level)
    logger.addHandler(handler)
    return handler


def release_logging(handler: logging.Handler) -> None:
    """Detach and close ``handler`` installed by :func:`configure_logging`."""
    logging.getLogger("subspace").removeHandler(handler)
    handler.close()
