"""Spawn manager logging.

Two sinks share the ``appspawn.manager`` logger:

- stderr: one line per event, ``appspawn[<pid>] LEVEL event: message``
  followed by the worker context the event carries (app root, worker pid,
  stage, error kind). This is what an operator watching the manager sees.
- system.jsonl: WARNING+ events as JSON lines (ISO8601Formatter), added by
  configure_logging() once the log directory is known.

Spawner, manager and CLI code never build log lines themselves; they
describe what happened as a SpawnSystemEvent and pass it to log_event().
"""

from __future__ import annotations

__all__ = [
    "configure_logging",
    "log_event",
]

import logging
import os
from typing import Any

from appspawn.config import SpawnServerConfig, get_system_log_path
from appspawn.constants import APP_NAME
from appspawn.models import SpawnSystemEvent
from appspawn.utils.iso_formatter import ISO8601Formatter

_logger = logging.getLogger(f"{APP_NAME}.manager")
_logger.setLevel(logging.DEBUG)
_logger.propagate = False

_file_handler_configured: bool = False

# Event fields shown after the message on the console, in this order
_CONSOLE_CONTEXT_FIELDS: tuple[str, ...] = ("app_root", "pid", "spawn_method", "stage", "error_type")


class _SpawnConsoleFormatter(logging.Formatter):
    """One line per event, tagged with the manager pid and worker context."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = f"{APP_NAME}[{record.process or os.getpid()}] {record.levelname}"
        if not isinstance(record.msg, dict):
            return f"{prefix}: {record.getMessage()}"

        event: dict[str, Any] = record.msg
        name = event.get("event")
        text = event.get("message") or name or ""
        line = f"{prefix} {name}: {text}" if name else f"{prefix}: {text}"
        context = " ".join(f"{key}={event[key]}" for key in _CONSOLE_CONTEXT_FIELDS if event.get(key) is not None)
        return f"{line} [{context}]" if context else line


def _console_handler(level: int | str) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(_SpawnConsoleFormatter())
    return handler


if not _logger.handlers:
    _logger.addHandler(_console_handler(logging.INFO))


def configure_logging(config: SpawnServerConfig) -> None:
    """Install the configured console level and the system log file.

    Runs once per process. A log directory that cannot be created is
    reported on stderr and the manager keeps running without the file.

    Args:
        config: Spawn server configuration (log_dir, log_level).
    """
    global _file_handler_configured

    if _file_handler_configured:
        return

    for handler in _logger.handlers:
        handler.close()
    _logger.handlers.clear()
    _logger.addHandler(_console_handler(config.log_level))

    log_path = get_system_log_path(config)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        log_event(
            logging.WARNING,
            SpawnSystemEvent(
                event="file_logging_failed",
                message=f"System log unavailable, logging to stderr only: {log_path}",
                error_type=type(e).__name__,
                error_message=str(e),
                details={"log_path": str(log_path)},
            ),
        )
        return

    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ISO8601Formatter())
    _logger.addHandler(file_handler)
    _file_handler_configured = True


def log_event(level: int, event: SpawnSystemEvent) -> None:
    """Log a spawn manager event; unset fields are left out of the record."""
    _logger.log(level, event.model_dump(exclude_none=True))
