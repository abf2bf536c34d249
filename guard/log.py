"""
Royalguard logging setup.

All modules log through named loggers under "royalguard". Field values and
key material are never passed to a logger; the redaction filter is a second
line for anything that looks like a password assignment.
"""

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

ROOT_LOGGER = "royalguard"

_SENSITIVE_PATTERN = re.compile(
    r'(?i)\b(password|passwd|pass|pwd|secret)\s*[=:]\s*("[^"]*"|\'[^\']*\'|\S+)'
)

_REDACTED_TEXT = "[REDACTED]"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class RedactingFilter(logging.Filter):
    """Replace `password=...` style fragments in messages and string args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


def redact(text: str) -> str:
    return _SENSITIVE_PATTERN.sub(lambda m: f"{m.group(1)}={_REDACTED_TEXT}", text)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None,
                  file_level: str = "INFO") -> logging.Logger:
    """
    Configure the "royalguard" logger.

    Args:
        verbose: Log DEBUG to stderr instead of WARNING
        log_file: Optional path of a rotating log file (1 MB x 3)
        file_level: Level for the file handler

    Returns:
        The configured "royalguard" logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    redacting = RedactingFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    console.addFilter(redacting)
    logger.addHandler(console)

    if log_file:
        path = os.path.abspath(os.path.expanduser(log_file))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setLevel(getattr(logging, file_level.upper()))
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler.addFilter(redacting)
        logger.addHandler(file_handler)

    return logger
