"""
Voucher Access Atlas - Logging Configuration
Structured JSON logging for production, readable lines for local builds

Each build also writes a dated log file under LOG_DIR; join diagnostics
(dropped and zero-filled rows) land there as the audit trail of the run.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Optional

from pythonjsonlogger import jsonlogger

from config.settings import get_settings

settings = get_settings()

BANNER_WIDTH = 60


def _build_formatter() -> logging.Formatter:
    if settings.ENVIRONMENT == "production":
        # One JSON object per line for log aggregation
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S"
        )
    return logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )


def setup_logging(
    name: str = "voucher_atlas",
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure console (and optional file) logging for a pipeline run.

    Args:
        name: Logger name; also the prefix of the dated log file
        log_dir: Directory for the build log (default: settings.LOG_DIR, "" disables)
        level: Level name (default: settings.LOG_LEVEL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper()))

    logger.handlers = []
    logger.propagate = False

    formatter = _build_formatter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    log_dir = settings.LOG_DIR if log_dir is None else log_dir
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{name}_{datetime.now().strftime('%Y%m%d')}.log")

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Module loggers (get_logger(__name__)) have no handlers of their own
    root_logger = logging.getLogger()
    root_logger.setLevel(logger.level)
    root_logger.handlers = list(logger.handlers)

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Args:
        module_name: Name of the module (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(module_name)


def log_stage(logger: logging.Logger, title: str) -> None:
    """Log a stage banner."""
    logger.info("=" * BANNER_WIDTH)
    logger.info(title)
    logger.info("=" * BANNER_WIDTH)
