"""Logger construction for applications embedding the client."""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping, TextIO

LEVEL_ENV_VAR = "LOG_LEVEL"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def create_logger(
    name: str,
    level: str | int | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Return a logger writing to ``stream`` (stdout by default).

    The level falls back to ``LOG_LEVEL`` and then to INFO. A logger that
    already has handlers keeps them.
    """
    env = os.environ if environ is None else environ
    if level is None:
        level = env.get(LEVEL_ENV_VAR, "INFO")
    if isinstance(level, str):
        level = level.upper()

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    return logger
