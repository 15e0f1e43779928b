"""Logging configuration for Parley."""

import logging
import os
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """Configure and return the application logger.

    The level defaults to ``PARLEY_LOG_LEVEL`` (or INFO). httpx logs every
    request at INFO, which would leak the API key query parameter, so it is
    held at WARNING.
    """
    if level is None:
        level = os.environ.get("PARLEY_LOG_LEVEL", "INFO").upper()

    logger = logging.getLogger("parley")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logger


logger = setup_logging()
