"""
Logging setup for the KEON service.

Records emitted while a request is being served carry its ``request_id``
and the acting ``profile_id`` (X-Profile-Id), so a workflow decision logged
deep in a service can be traced back to the call that made it.

Output:
    development / testing   one coloured line per record
    production              one JSON object per record

LOG_LEVEL overrides the default level (DEBUG outside production, INFO in it).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Fields the timing middleware and the request filter attach to records.
CONTEXT_FIELDS = ("request_id", "profile_id", "method", "path", "status", "duration_ms", "remote_addr")

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3")


class RequestContextFilter(logging.Filter):
    """Attach request_id / profile_id to records logged inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "profile_id", None) is None:
                record.profile_id = request.headers.get("X-Profile-Id")
        return True


def _context_of(record: logging.LogRecord) -> dict:
    ctx = {}
    for key in CONTEXT_FIELDS:
        val = getattr(record, key, None)
        if val not in (None, ""):
            ctx[key] = val
    return ctx


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context_of(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [request] message [duration]``"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{stamp} {record.levelname:<8}{self.RESET}", f"{record.name}:"]
        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"[{request_id}]")
        parts.append(record.getMessage())
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"({duration:.0f}ms)")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``."""
    testing = app.config.get("TESTING", False)
    production = not testing and not app.config.get("DEBUG", False)

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    # create_app runs once per test session and per worker; replace, never stack
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s output)", level_name, "json" if production else "text")
