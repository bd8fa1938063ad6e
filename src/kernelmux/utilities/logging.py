"""Logging utilities for kernelmux."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

_KERNELMUX_LOGGER_NAME = "kernelmux"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure logging for kernelmux.

    Only the ``kernelmux`` namespace logger is configured, so application-level
    logging configuration is left alone.

    Args:
        level: The log level to use.
    """
    kernelmux_logger = logging.getLogger(_KERNELMUX_LOGGER_NAME)
    kernelmux_logger.setLevel(level)

    if kernelmux_logger.handlers:
        return

    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True)
    kernelmux_logger.addHandler(handler)
