"""
Logging setup for BuildTrack.

Production writes one JSON object per line; development and tests use a
short coloured line. ``LOG_LEVEL`` (config or env) picks the level.

Inside a request every record is tagged with ``request_id``, ``actor`` and
``role`` by ``RequestContextFilter``. Services add domain fields through
``extra=``, for example::

    logger.info("Project finances recalculated", extra={"project_id": project_id})
    logger.warning("Material discrepancy detected",
                   extra={"project_id": pid, "event_type": "discrepancy"})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes copied into the output when present.
CONTEXT_FIELDS = (
    "request_id", "actor", "role",
    "method", "path", "status", "duration_ms", "remote_addr",
    "project_id", "purchase_order", "event_type", "limits",
)

_IDENTITY_FROM_G = (("request_id", "request_id"), ("actor", "current_user"), ("role", "current_user_role"))


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class RequestContextFilter(logging.Filter):
    """Fill request id and caller identity from ``flask.g``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            for attr, g_name in _IDENTITY_FROM_G:
                if getattr(record, attr, None) is None:
                    setattr(record, attr, getattr(g, g_name, None))
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message key=value ...`` with a coloured level."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    # request_id is noise on a terminal
    _SHOWN = ("project_id", "purchase_order", "event_type", "status", "duration_ms")

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context(record)
        tail = " ".join(f"{k}={ctx[k]}" for k in self._SHOWN if k in ctx)
        line = (
            f"{self.COLORS.get(record.levelname, '')}"
            f"{datetime.fromtimestamp(record.created):%H:%M:%S} {record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if tail:
            line = f"{line}  {tail}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    JSON in production, readable otherwise. Handlers are replaced, not
    appended, so building several apps in one process logs each line once.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing
    default_level = "INFO" if production else "DEBUG"
    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL") or default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "flask_limiter"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s)", level_name, "json" if production else "text")
