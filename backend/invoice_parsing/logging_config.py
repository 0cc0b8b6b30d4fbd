"""Centralized logging configuration for invoice parsing.

This module provides structured logging with context fields for parsing runs.
Logs are written to both console (for Docker logs) and rotating files.

Usage:
    from invoice_parsing.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Attempt finished", extra={'strategy': 'hybrid', 'provider': 'gemini'})
"""

import logging
import os
from logging.handlers import RotatingFileHandler

# Log directory from environment or default
# In Docker: /app/logs (mounted volume)
LOG_DIR = os.getenv("LOG_DIR", "/app/logs")


class StructuredFormatter(logging.Formatter):
    """Custom formatter that adds context fields to log records.

    Supports the following context fields via extra={} parameter:
    - document_id: Document being parsed
    - strategy: Parsing strategy name
    - provider: Provider id of the current attempt
    """

    def format(self, record):
        """Format log record with context fields."""
        record.document_id = getattr(record, "document_id", None)
        record.strategy = getattr(record, "strategy", None)
        record.provider = getattr(record, "provider", None)

        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """Get configured logger for parsing operations.

    Creates a logger with:
    - Console handler for Docker logs (INFO level)
    - Rotating file handler for all logs (DEBUG level)
    - Separate error file handler (ERROR level)

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)

    # Skip if already configured (prevents duplicate handlers)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    os.makedirs(LOG_DIR, exist_ok=True)

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(
        StructuredFormatter("[%(levelname)s] [strategy:%(strategy)s] %(message)s")
    )
    logger.addHandler(console)

    file_format = StructuredFormatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] "
        "[doc:%(document_id)s strategy:%(strategy)s provider:%(provider)s] %(message)s"
    )

    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "invoice_parsing.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB per file
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    error_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "invoice_parsing_errors.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=30,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    logger.addHandler(error_handler)

    return logger
