"""Project-wide logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

DEFAULT_LEVEL = logging.INFO
VERBOSITY_TO_LEVEL = {
    -2: logging.ERROR,
    -1: logging.WARNING,
    0: logging.INFO,
    1: logging.DEBUG,
}
LOG_FORMAT = "[%(levelname)s] %(message)s"
# Debug output mixes host chatter, chunk progress and session events.
DEBUG_LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def level_for_counts(verbose: int = 0, quiet: int = 0) -> int:
    delta = max(-2, min(1, verbose - quiet))
    return VERBOSITY_TO_LEVEL.get(delta, DEFAULT_LEVEL)


def configure_logging(*, verbose: int = 0, quiet: int = 0, stream: TextIO | None = None) -> None:
    """Install a single stream handler on the root logger for CLI usage."""
    level = level_for_counts(verbose, quiet)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(DEBUG_LOG_FORMAT if level <= logging.DEBUG else LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


__all__ = ["DEBUG_LOG_FORMAT", "LOG_FORMAT", "configure_logging", "level_for_counts"]
