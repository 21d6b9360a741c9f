"""Structured logging via structlog: JSON lines to stderr, optionally to hourly rotating files."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler
from typing import IO, Any

import structlog

# Handlers and file opened by the last setup_logging() call.
_installed: dict[str, Any] = {"handlers": [], "log_file": None}


def _teardown() -> None:
    """Remove what a previous setup_logging() installed."""
    root_logger = logging.getLogger()
    for handler in _installed["handlers"]:
        root_logger.removeHandler(handler)
        handler.close()
    if _installed["log_file"] is not None:
        _installed["log_file"].close()
    _installed["handlers"] = []
    _installed["log_file"] = None


def setup_logging(log_dir: str | None = None, log_level: str = "INFO") -> None:
    """Configure structlog with JSON output to stderr, plus hourly rotating files if log_dir is set.

    Calling it again replaces the previous configuration.
    """
    _teardown()
    level = log_level.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(level)
    root_logger.addHandler(stderr_handler)
    _installed["handlers"].append(stderr_handler)

    log_file: IO[str] | None = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, "gitterstream.jsonl")

        file_handler = TimedRotatingFileHandler(
            filename=log_path,
            when="H",
            interval=1,
            backupCount=168,  # 7 days of hourly logs
            utc=True,
        )
        file_handler.setLevel(level)
        root_logger.addHandler(file_handler)
        _installed["handlers"].append(file_handler)

        log_file = open(log_path, "a")  # noqa: SIM115
        _installed["log_file"] = log_file

    class _TeeWriter:
        """Write structured log lines to stderr and, when configured, the log file."""

        def write(self, message: str) -> None:
            if log_file is not None and not log_file.closed:
                log_file.write(message)
                log_file.flush()
            sys.stderr.write(message)

        def flush(self) -> None:
            if log_file is not None and not log_file.closed:
                log_file.flush()
            sys.stderr.flush()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=_TeeWriter()),
        cache_logger_on_first_use=True,
    )
