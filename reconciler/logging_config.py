"""
============================================================================
FILE: logging_config.py
LOCATION: reconciler/logging_config.py
============================================================================

PURPOSE:
    Logging setup for the reconciler with two output formats:
    - JSON structured logs (LOG_JSON=true) for log aggregators
    - Human-readable logs for operators reading a terminal

ROLE IN PROJECT:
    Every module obtains a child of the "reconciler" logger through
    get_logger(). The CLI tools call setup_logging() once at startup so the
    level and format follow the environment.

KEY COMPONENTS:
    - StructuredFormatter: JSON log formatter
    - OperatorFormatter: Console formatter for one-shot tools
    - setup_logging(level, production, logger_name): Configure the base logger
    - get_logger(name): Child logger accessor
    - logger: Default configured logger instance

LOG FORMAT (Operator):
    HH:MM:SS [LEVEL] module: message

LOG FORMAT (JSON):
    {"timestamp": "...", "level": "...", "module": "...", "message": "..."}

DEPENDENCIES:
    - External: logging (Python standard library)
    - Internal: None

USAGE:
    from reconciler.logging_config import get_logger

    logger = get_logger("migration")
    logger.info("Migrating %s users", count)
============================================================================
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional


BASE_LOGGER_NAME = "reconciler"


class StructuredFormatter(logging.Formatter):
    """JSON-style structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }

        if record.funcName:
            log_data["function"] = record.funcName

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Callers attach structured context with extra={"extra_data": {...}}
        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        return json.dumps(log_data, default=str)


class OperatorFormatter(logging.Formatter):
    """Human-readable log formatter for console tools."""

    FORMAT = "%(asctime)s [%(levelname)s] %(module)s: %(message)s"

    def __init__(self):
        super().__init__(self.FORMAT, datefmt="%H:%M:%S")


def setup_logging(
    level: Optional[str] = None,
    production: Optional[bool] = None,
    logger_name: str = BASE_LOGGER_NAME,
) -> logging.Logger:
    """
    Configure reconciler logging.

    Args:
        level: Log level name. Defaults to LOG_LEVEL or INFO.
        production: JSON output if True. Defaults to LOG_JSON.
        logger_name: Name of the logger to configure.

    Returns:
        Configured logger instance
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if production is None:
        production = os.getenv("LOG_JSON", "false").lower() == "true"

    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if production:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(OperatorFormatter())

    logger.addHandler(handler)

    # Own handler only; the root logger would print each line again
    logger.propagate = False

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a child of the reconciler logger."""
    base_logger = logging.getLogger(BASE_LOGGER_NAME)
    if name:
        return base_logger.getChild(name)
    return base_logger


logger = setup_logging()
