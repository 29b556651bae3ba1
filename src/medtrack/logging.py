"""Structured logging for medtrack.

Controlled via MEDTRACK_LOG_FORMAT env var: "json" (default) or "text".
Both formats carry the ``medtrack_*`` extras attached by the tracker
(medication_id, log_id, user_id, storage_key, ...).
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import IO, Any

EXTRA_PREFIX = "medtrack_"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key.startswith(EXTRA_PREFIX)}


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        log_entry.update(record_extras(record))
        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain log lines with extras appended as ``key=value`` (prefix dropped)."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if not extras:
            return line
        pairs = " ".join(f"{key[len(EXTRA_PREFIX):]}={value}" for key, value in sorted(extras.items()))
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(log_format: str, level: int = logging.INFO, stream: IO[str] | None = None) -> None:
    """Configure the root logger with one JSON or text handler on ``stream`` (stderr)."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)
