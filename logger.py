"""Logging configuration for the event reminders service.

One shared logger for the whole process. Reminder titles and trigger keys are
logged freely; credentials that may surface in httpx error messages are
redacted before they reach any handler.
"""

import logging
import re
import sys
from datetime import datetime

from config import LOG_DIR, LOG_LEVEL

_SECRET_PATTERNS = [
    (re.compile(r'(Bearer|Basic)\s+[A-Za-z0-9\-_\.]+'), r'\1 [REDACTED]'),
    (re.compile(r'eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+'), '[JWT_TOKEN]'),
    (re.compile(r'(apikey|api_key|token)=[^&\s]+', re.IGNORECASE), r'\1=[REDACTED]'),
]


class RedactSecretsFilter(logging.Filter):
    """Strip bearer tokens and API keys out of formatted messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        for pattern, replacement in _SECRET_PATTERNS:
            message = pattern.sub(replacement, message)
        record.msg = message
        record.args = None
        return True


def setup_logging() -> logging.Logger:
    """Set up logging to both file and console."""
    logger = logging.getLogger("event_reminders")
    level = logging.getLevelName(LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()
    logger.filters.clear()
    logger.addFilter(RedactSecretsFilter())

    # File handler - dated log file
    log_file = LOG_DIR / f"reminders-{datetime.now().strftime('%Y-%m-%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(module)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(file_handler)

    # Console handler (only if attached to a terminal)
    if sys.stdout is not None and sys.stdout.isatty():
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(message)s",
            datefmt="%H:%M:%S"
        ))
        logger.addHandler(console_handler)

    return logger


# Global logger instance
logger = setup_logging()
