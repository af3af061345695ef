from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO, Union

LOGGER_NAME = "plan_dag"

_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(
    level: Union[int, str] = logging.WARNING,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Attach a single stderr handler to the plan_dag logger.

    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    return logger
