"""
Logging configuration

The server runs unattended next to the radio link, so the optional log
file rotates instead of growing without bound.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("werkzeug", "urllib3", "asyncio")


def resolve_level(level: Union[int, str]) -> int:
    """Numeric level for an int or a name like 'debug'; unknown names give INFO"""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO,
                  log_file: Optional[str] = None,
                  log_format: Optional[str] = None):
    """
    Configure the root logger

    Args:
        level: Logging level or its name (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to a rotating log file
        log_format: Optional custom format string
    """
    level = resolve_level(level)
    formatter = logging.Formatter(log_format or DEFAULT_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
