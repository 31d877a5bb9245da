"""Logging utilities for the location MCP server."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

KEY_PREFIX_LENGTH = 8


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """Configure logging for the server.

    Args:
        level: the log level to use
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def redact_key(key: str | None) -> str:
    """Return a log-safe rendering of an API key: its prefix followed by an ellipsis."""
    if not key:
        return "<none>"
    if len(key) <= KEY_PREFIX_LENGTH:
        return "***"
    return key[:KEY_PREFIX_LENGTH] + "..."
