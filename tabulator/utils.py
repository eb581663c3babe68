from __future__ import annotations

import logging
import math
from typing import Any, Union


def setup_logging(level: Union[str, int] = logging.INFO) -> logging.Logger:
    """
    Configure the package logger once with a timestamped stream handler.

    Module loggers (``logging.getLogger(__name__)``) propagate to it.
    """
    logger = logging.getLogger("tabulator")

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


def to_number(value: Any) -> float:
    """Coerce a loosely typed entry to float; anything non-numeric is 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return num

