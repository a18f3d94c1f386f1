"""
Logging configuration for scan runs.

The scanner logs through the standard ``logging`` module under the
``npmsentry`` logger hierarchy. This module wires handlers onto that
logger, optionally with a JSON-lines formatter carrying structured
scan fields, and offers a small analyzer for such logs.
"""

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Any

ROOT_LOGGER_NAME = "npmsentry"

_STRUCTURED_FIELDS = (
    "event",
    "project",
    "worker_id",
    "file",
    "rule_id",
    "duration",
    "error",
    "timeout",
)


class ScanEventFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_format: bool = False,
    enable_console: bool = True,
) -> logging.Logger:
    """
    Configure the ``npmsentry`` logger.

    Safe to call more than once; existing handlers are replaced. Worker
    processes call this again at startup with the parent's settings.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Path to a log file (optional), rotated daily
        json_format: Emit JSON lines instead of plain text
        enable_console: Whether to also log to stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter
    if json_format:
        formatter = ScanEventFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
        )

    if log_file:
        file_handler = TimedRotatingFileHandler(
            log_file,
            when="D",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def summarize_scan_log(log_file: str) -> dict[str, Any]:
    """
    Summarize a JSON-lines scan log.

    Args:
        log_file: Path to a log written with ``json_format=True``

    Returns:
        Dictionary with completion, error and timeout counts
    """
    stats: dict[str, Any] = {
        "projects_completed": 0,
        "project_errors": 0,
        "timeouts": 0,
        "worker_replacements": 0,
        "warnings": 0,
        "levels": {},
        "slowest_project": None,
    }
    slowest = -1.0

    try:
        with open(log_file, encoding="utf-8") as f:
            for line in f:
                try:
                    entry = json.loads(line.strip())
                except json.JSONDecodeError:
                    continue

                level = entry.get("level", "UNKNOWN")
                stats["levels"][level] = stats["levels"].get(level, 0) + 1
                if level == "WARNING":
                    stats["warnings"] += 1

                event = entry.get("event")
                if event == "project_complete":
                    stats["projects_completed"] += 1
                    duration = entry.get("duration")
                    if isinstance(duration, (int, float)) and duration > slowest:
                        slowest = duration
                        stats["slowest_project"] = entry.get("project")
                elif event == "project_error":
                    stats["project_errors"] += 1
                elif event == "project_timeout":
                    stats["timeouts"] += 1
                elif event == "worker_replaced":
                    stats["worker_replacements"] += 1

    except FileNotFoundError:
        pass

    return stats
