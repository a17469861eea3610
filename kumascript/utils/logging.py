"""
Structured logging helpers.
Path: kumascript/utils/logging.py
"""

import logging
from typing import Any

import structlog


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """
    Configure structlog with the standard KumaScript processor chain.

    Args:
        level: Minimum log level name for the stdlib root logger
        json: Render events as JSON lines instead of the console renderer
    """
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory()
    )


def get_logger(**initial_values: Any) -> Any:
    """Get a structlog logger, optionally bound to initial key/values."""
    logger = structlog.get_logger()
    if initial_values:
        return logger.bind(**initial_values)
    return logger
