"""Log handler setup for the ``pm_flows`` logger tree."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from pm_flows.config import LoggingSettings

LOGGER_NAME = "pm_flows"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def setup_logging(settings: LoggingSettings) -> logging.Logger:
    """Attach a rotating file handler and a quiet console handler once."""

    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(settings.level)
    formatter = logging.Formatter(LOG_FORMAT)

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        settings.log_dir / "pm_flows.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(settings.level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Terminal output belongs to the CLI; only problems reach stderr.
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger
