"""Logging configuration for the usage meter CLI.

Warnings about skipped lines and unreadable sources go to stderr so they
never mix with table or JSON output on stdout.
"""

import sys
from typing import TYPE_CHECKING

from loguru import logger


if TYPE_CHECKING:
    from loguru import Record


LEVEL_COLORS = {
    "TRACE": "<dim>",
    "DEBUG": "<dim>",
    "INFO": "<blue>",
    "SUCCESS": "<green>",
    "WARNING": "<yellow>",
    "ERROR": "<red>",
    "CRITICAL": "<red><bold>",
}


def _log_format(record: "Record") -> str:
    """Build the loguru format string for one record.

    Structured fields passed as keyword arguments are appended as
    key=value pairs.
    """
    color = LEVEL_COLORS.get(record["level"].name, "")
    close = "</>" * color.count("<")

    fmt = (
        "<dim>{time:HH:mm:ss}</dim> "
        f"{color}{{level: <8}}{close}"
        "<dim>{name}</dim>: {message}"
    )

    extra = record["extra"]
    if extra:
        extra_str = " ".join(f"{k}={v!r}" for k, v in extra.items())
        # Escape braces to prevent loguru format string injection
        extra_str = extra_str.replace("{", "{{").replace("}", "}}")
        extra_str = extra_str.replace("<", r"\<")
        fmt += f" <dim>| {extra_str}</dim>"

    fmt += "\n"

    if record["exception"]:
        fmt += "{exception}\n"

    return fmt


def configure_logging(level: str = "WARNING") -> None:
    """Replace loguru's default handler with a single stderr handler.

    Args:
        level: Minimum log level to display (e.g., "DEBUG", "WARNING").
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=_log_format,
        colorize=True,
    )
