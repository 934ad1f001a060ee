"""Logging configuration for lspguard.

Standard ``logging`` with:
- Verbosity levels: error(0), warning(1), info(2), debug(3), everything(4)
- Level name from ``LSPGUARD_LOG_LEVEL`` when nothing is passed explicitly
- Optional log file, stderr otherwise

Stdout is never used: in proxy mode it carries protocol traffic.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_LEVEL_ENV_VAR = "LSPGUARD_LOG_LEVEL"

logger = logging.getLogger("lspguard")

_initialized = False

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: logging.DEBUG,
    4: logging.NOTSET,
}


def resolve_level(level: str | None = None, verbose: int | None = None) -> int:
    """Pick a log level: verbosity wins, then the level name, then the env var."""
    if verbose is not None:
        return _VERBOSITY_MAP.get(verbose, logging.NOTSET)

    name = level or os.getenv(LOG_LEVEL_ENV_VAR) or "WARNING"
    return _LEVEL_MAP.get(name.upper(), logging.WARNING)


def setup_logging(
    level: str | None = None,
    *,
    verbose: int | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Attach a handler to the ``lspguard`` logger. Later calls are no-ops."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_level = resolve_level(level, verbose)
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )

    handler: logging.Handler
    if log_file:
        try:
            handler = logging.FileHandler(
                Path(log_file).expanduser(), mode="a", encoding="utf-8"
            )
        except OSError as exc:
            print(f"[lspguard] Failed to open log file: {exc}", file=sys.stderr)
            handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers installed by :func:`setup_logging` (tests)."""
    global _initialized
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _initialized = False
