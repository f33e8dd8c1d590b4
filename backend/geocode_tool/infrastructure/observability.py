"""Structured Logging — JSON formatter and setup for production observability.

Invariants:
    - Every line carries timestamp, level, logger name, worker pid and message
    - Request extras (method, url, body, status, error_code, ...) surfaced when present,
      in both formats
    - EMERGENCY sits above CRITICAL: reserved for failures while handling a fatal fault

Design Decisions:
    - Own formatters over third-party libs: stdlib logging is all uvicorn
      and the workers need
    - setup_logging() replaces its own handler on re-entry, so the lifespan
      and the worker runner may both call it
"""

import json
import logging
import os
from datetime import datetime, timezone

EMERGENCY = logging.CRITICAL + 10
logging.addLevelName(EMERGENCY, "EMERGENCY")

EXTRA_FIELDS = (
    "method", "url", "body", "status", "error_code", "path",
    "worker_state", "worker_id", "attempt", "query",
)

_HANDLER_MARK = "_geocode_tool"


def record_extras(record: logging.LogRecord) -> dict:
    return {
        key: record.__dict__[key]
        for key in EXTRA_FIELDS
        if record.__dict__.get(key) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "pid": os.getpid(),
            "message": record.getMessage(),
            **record_extras(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        # request bodies may hold anything json.loads produced, plus bytes
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local development."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(process)d %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if not extras:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{k}={v!r}" for k, v in extras.items())
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Install the worker's root handler (idempotent)."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, _HANDLER_MARK, False):
            root.removeHandler(existing)
    handler = logging.StreamHandler()
    setattr(handler, _HANDLER_MARK, True)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
