"""Log formatting utilities for JSONL output.

Provides ISO 8601 timestamp formatting for the manager's system log.
"""

from __future__ import annotations

__all__ = ["ISO8601Formatter"]

import json
import logging
from datetime import datetime, timezone


class ISO8601Formatter(logging.Formatter):
    """Formatter emitting one JSON object per record with an ISO 8601 UTC time.

    Format: YYYY-MM-DDTHH:MM:SS.sssZ
    Example: 2025-12-04T10:48:37.123Z
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSONL with ISO 8601 timestamp.

        Args:
            record: The log record to format

        Returns:
            str: JSON-formatted log entry with timestamp
        """
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        # Structured events arrive as dicts (see log_config.log_event)
        if isinstance(record.msg, dict):
            log_data = dict(record.msg)
        else:
            log_data = {"message": record.getMessage()}

        log_data.setdefault("level", record.levelname)
        log_data.pop("time", None)
        return json.dumps({"time": timestamp, **log_data}, default=str)
