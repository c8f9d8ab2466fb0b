"""Opt-in console logging for the package."""

import logging
import sys


def setup_logging(level: int = logging.INFO, format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s") -> logging.Logger:
    """
    Configure logging of the bifcont loggers to stdout.

    Progress of the continuation steps is logged with level INFO, the Newton
    and bisection iterations with level DEBUG.
    """
    logger = logging.getLogger("bifcont")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string))
    # replace handlers from previous calls
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
