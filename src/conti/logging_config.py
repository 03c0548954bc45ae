"""Logging configuration for conti."""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

APP_LOGGER = "conti"

THIRD_PARTY_LOGGERS = [
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "sqlalchemy.dialects",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "aiosqlite",
    "google.api_core",
    "google.auth",
    "google.cloud.firestore",
    "grpc",
]


def setup_logging(
    app_log_level: Optional[str] = None,
    third_party_log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Set up logging for the application.

    Args:
        app_log_level: Log level for application logs (default: CONTI_LOG_LEVEL or WARNING)
        third_party_log_level: Log level for third-party libraries (default: WARNING)
        log_file: Optional log file path. If None, logs only to the console
        max_file_size: Maximum size of log file before rotation (bytes)
        backup_count: Number of backup log files to keep

    Returns:
        Logger instance for the application
    """
    app_log_level = app_log_level or os.getenv("CONTI_LOG_LEVEL", "WARNING")
    third_party_log_level = third_party_log_level or os.getenv("CONTI_THIRD_PARTY_LOG_LEVEL", "WARNING")
    log_file = log_file or os.getenv("CONTI_LOG_FILE")

    app_level = getattr(logging, app_log_level.upper(), logging.WARNING)
    third_party_level = getattr(logging, third_party_log_level.upper(), logging.WARNING)

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(app_level)

    # Clear any existing handlers to avoid duplicates
    app_logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Diagnostics go to stderr so command output stays clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(app_level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_file_size, backupCount=backup_count
        )
        file_handler.setLevel(app_level)
        file_handler.setFormatter(formatter)
        app_logger.addHandler(file_handler)

    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(third_party_level)

    app_logger.propagate = False
    return app_logger


def get_logger(name: str = APP_LOGGER) -> logging.Logger:
    """Get a logger namespaced under the application logger.

    Args:
        name: Logger name (typically module name)

    Returns:
        Logger instance
    """
    if name == APP_LOGGER or name.startswith(f"{APP_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{APP_LOGGER}.{name}")
