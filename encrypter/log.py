# encrypter/log.py (v1.0.0)
"""JSON logging setup."""

import logging
import sys

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "encrypter"
LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s [%(pathname)s:%(lineno)d]'


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configures the package logger to emit JSON to stderr. Safe to call more than once."""
    logger = logging.getLogger(LOGGER_NAME)
    try: logger.setLevel(level)
    except ValueError: logger.setLevel("INFO"); logger.warning(f"Invalid LOG_LEVEL '{level}', using INFO.")
    logger.propagate = False
    if not logger.handlers:
        log_handler = logging.StreamHandler(sys.stderr)
        log_handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        logger.addHandler(log_handler)
    return logger
