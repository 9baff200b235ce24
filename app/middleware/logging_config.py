"""
Logging setup for the workflow service.

- Development / testing: colored single-line records; transition context
  (entity, action, from → to) is appended when a record carries it
- Production: one JSON object per record for the log aggregator
- Level: LOG_LEVEL from app config, then the environment
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Attributes passed through ``extra=`` that are worth keeping in the output.
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
WORKFLOW_FIELDS = (
    "project_id", "entity_id", "entity_kind", "action", "actor_id",
    "from_state", "to_state", "task_id",
)

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


def _context(record: logging.LogRecord, fields) -> dict:
    return {k: getattr(record, k) for k in fields if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """Serialise each record, plus any request / workflow context, as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(_context(record, REQUEST_FIELDS))
        payload.update(_context(record, WORKFLOW_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{stamp} {record.levelname:<8}{_RESET} {record.name}: {record.getMessage()}"

        wf = _context(record, WORKFLOW_FIELDS)
        if "from_state" in wf and "to_state" in wf:
            line += f" [{wf.get('entity_id', '?')} {wf['from_state']}→{wf['to_state']}]"
        elif "task_id" in wf:
            line += f" [task {wf['task_id']}]"
        if getattr(record, "duration_ms", None) is not None:
            line += f" ({record.duration_ms:.0f}ms)"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for *app*."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL")
                  or ("INFO" if production else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app may run more than once per process (tests)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s json=%s", level_name, production)
