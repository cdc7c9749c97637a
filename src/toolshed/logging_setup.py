"""Logging configuration, set up once by the CLI entry point.

Every module that does ``log = logging.getLogger(__name__)`` inherits this.
Level precedence: ``-v`` flags > TOOLSHED_LOG_LEVEL > config ``log_level``.
"""

from __future__ import annotations

import logging
import os
import sys

_FMT_MINIMAL = "%(message)s"
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s"
_DATEFMT = "%H:%M:%S"

_NOISY_LOGGERS = ("httpx", "httpcore")

ENV_VAR = "TOOLSHED_LOG_LEVEL"


def resolve_level(verbosity: int = 0, configured: str | None = None) -> str:
    if verbosity >= 2:
        return "DEBUG"
    if verbosity == 1:
        return "INFO"
    return os.environ.get(ENV_VAR) or configured or "WARNING"


def setup_logging(level: str = "WARNING") -> None:
    """Point the root logger at stderr with a level-appropriate format."""
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    if numeric <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT
    elif numeric <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric)

    if numeric > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
