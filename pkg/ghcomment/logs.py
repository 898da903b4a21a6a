"""Logging setup for the command line entry point.

Library modules only ask for loggers; this is the one place that installs a
handler. Under GitHub Actions records become workflow commands
(`::warning::...`) so they show up as annotations.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, Callable

LOGGER_NAME = "pkg.ghcomment"
DEFAULT_LEVEL = logging.WARNING

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_WORKFLOW_COMMANDS = {
    logging.DEBUG: "debug",
    logging.INFO: "notice",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


class WorkflowCommandFormatter(logging.Formatter):
    """Format records as GitHub Actions workflow commands."""

    def format(self, record: logging.LogRecord) -> str:
        command = _WORKFLOW_COMMANDS.get(record.levelno, "notice")
        message = super().format(record)
        # Workflow commands are single-line; GitHub decodes %0A back to newlines.
        message = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
        return f"::{command}::{message}"


def parse_level(name: str) -> int | None:
    return _LEVELS.get((name or "").strip().lower())


def configure_logging(
    level_name: str = "",
    stream: IO[str] | None = None,
    getenv: Callable[[str], str | None] | None = None,
) -> logging.Logger:
    """Attach a single stderr handler to the package logger."""
    getenv = getenv or os.environ.get
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if getenv("GITHUB_ACTIONS") == "true":
        handler.setFormatter(WorkflowCommandFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter("ghcomment %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(DEFAULT_LEVEL)

    if level_name:
        level = parse_level(level_name)
        if level is None:
            logger.error("the log level is invalid: %s", level_name)
        else:
            logger.setLevel(level)
    return logger
