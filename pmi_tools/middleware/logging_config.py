"""
Structured logging configuration.

Two output shapes:
    json      one JSON object per line, for the log shipper (production default)
    readable  colored single line, for a developer terminal

LOG_LEVEL and LOG_FORMAT env variables override the defaults. Every record
passing through the root handler is stamped with the current request id and
acting user, so service-layer logs can be joined to the access log.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Attributes copied from ``extra=`` (or the request filter) into JSON output
CONTEXT_FIELDS = (
    "request_id",
    "actor",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "assignment_id",
    "progress_id",
    "event_type",
)

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


class RequestContextFilter(logging.Filter):
    """Fill request_id / actor from flask.g unless the caller passed them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor", None) is None:
                record.actor = getattr(g, "current_user_email", None)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored one-liner: time, level, logger, message, then context tags."""

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = []
        for field in ("request_id", "actor", "assignment_id", "progress_id"):
            value = getattr(record, field, None)
            if value is not None:
                tags.append(f"{field}={value}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"{duration:.0f}ms")

        line = f"{color}{stamp} {record.levelname:<8}{_RESET} {record.name}: {record.getMessage()}"
        if tags:
            line += f"  [{' '.join(tags)}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Defaults: readable + DEBUG when DEBUG or TESTING is set, json + INFO
    otherwise.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = os.getenv("LOG_FORMAT", "json" if production else "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    # Replaced, not appended: create_app runs more than once under pytest
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
