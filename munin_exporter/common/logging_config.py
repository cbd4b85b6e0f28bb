"""
Structured logging configuration using JSON format.
Every component logs one JSON object per line to stdout.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Optional

# Extra attributes lifted from the record into the JSON document when present
CONTEXT_FIELDS = ("hostname", "plugin", "scrape_id")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with scrape context"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any scrape context extras"""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(name: str, level: str = "INFO") -> logging.Logger:
    """
    Configure structured logging for a component.

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get or create a logger with optional level override.

    Args:
        name: Logger name
        level: Optional log level override

    Returns:
        Logger instance
    """
    if level:
        return setup_logging(name, level)

    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logging(name, "INFO")

    return logger


def set_level(level: str) -> None:
    """Apply *level* to every logger already configured by this module."""
    numeric = getattr(logging, level.upper())
    for logger in logging.Logger.manager.loggerDict.values():
        if not isinstance(logger, logging.Logger):
            continue
        if any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
            logger.setLevel(numeric)
