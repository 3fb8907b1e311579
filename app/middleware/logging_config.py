"""
QA Tracking Dashboard
Logging setup.

One stderr handler on the root logger, shared by every
``logging.getLogger(__name__)`` in the app:

    LOG_FORMAT=json      one JSON object per line (default outside debug)
    LOG_FORMAT=readable  coloured single line (default in debug / testing)
    LOG_LEVEL            DEBUG in debug / testing, INFO otherwise

``RequestContextFilter`` stamps ``request_id`` and ``cycle_id`` onto every
record logged while a request is active, so service-layer lines (change
history failures, LLM usage) can be joined to the access line written by
``app.middleware.timing``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Structured fields copied from ``extra=`` into the JSON line
EXTRA_FIELDS = (
    "request_id",
    "cycle_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "provider",
    "model",
    "purpose",
    "latency_ms",
)

NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3", "httpx", "httpcore", "google_genai")


def current_cycle_id():
    """Cycle in scope for this request: URL segment first, then ``?cycle_id=``."""
    cycle_id = (request.view_args or {}).get("cycle_id")
    if cycle_id is None:
        cycle_id = request.args.get("cycle_id", type=int)
    return cycle_id


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "cycle_id", None) is None:
                record.cycle_id = current_cycle_id()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, Korean text kept readable."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:03:11 WARNING  [a1b2c3 c=2] app.services…: message``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        tags = []
        if getattr(record, "request_id", None):
            tags.append(record.request_id)
        if getattr(record, "cycle_id", None) is not None:
            tags.append(f"c={record.cycle_id}")
        ctx = f" [{' '.join(tags)}]" if tags else ""
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET}"
            f"{ctx} {record.name}: {record.getMessage()}"
        )
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for ``app``. Safe to call once per app instance."""
    verbose = app.config.get("DEBUG", False) or app.config.get("TESTING", False)

    level_name = os.getenv("LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = os.getenv("LOG_FORMAT", "readable" if verbose else "json").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()  # app factory runs repeatedly under pytest
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
