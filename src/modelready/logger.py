"""
MODELREADY_LOG_LEVEL=DEBUG controls the log level of every modelready logger
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "{asctime} [{levelname}] [{name}] {message}"
DATE_FORMAT = "%H:%M:%S"


class CustomFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(LOG_FORMAT, style="{", datefmt=DATE_FORMAT)


def create_logger(name: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name or "modelready")

    if getattr(logger, "_modelready_configured", False):
        return logger

    log_level = os.getenv("MODELREADY_LOG_LEVEL", "INFO").upper()
    logger.setLevel(level=getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(CustomFormatter())
    logger.addHandler(handler)
    logger.propagate = False  # Prevent duplicate lines through the root logger

    logger._modelready_configured = True
    return logger
