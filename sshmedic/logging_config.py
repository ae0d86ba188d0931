"""Structured JSONL logging.

Every diagnostic run, probe, fix and session transition is written as one
JSON object per line, tagged with the request-scoped correlation ID.
Free-text ``logger.warning``/``logger.error`` calls land in the same file
as ``log`` events so a single stream tells the whole story.
"""

import os
import json
import logging
from datetime import datetime, timezone
from contextvars import ContextVar

from sshmedic.config import settings

LOGGER_NAME = "sshmedic"

# Request-scoped correlation ID
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def set_correlation_id(cid: str):
    _correlation_id.set(cid)


def get_correlation_id() -> str:
    return _correlation_id.get()


class JSONLFormatter(logging.Formatter):
    """One JSON object per record.

    Records emitted through ``log_event`` carry a ``data`` payload that was
    redacted on the way in. Plain records are redacted here.
    """

    def format(self, record):
        from sshmedic.safety import redact_text

        if hasattr(record, "data"):
            event, data = record.msg, record.data
        else:
            event = "log"
            data = {"logger": record.name, "message": redact_text(record.getMessage())}
            if record.exc_info:
                data["exception"] = redact_text(self.formatException(record.exc_info))
        return json.dumps({
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "event": event,
            "data": data,
        }, default=str)


def setup_logging(log_dir=None):
    """Configure the JSONL file logger and return it.

    Logs write to ``<log_dir>/sshmedic.jsonl``. Calling this again with the
    same directory does not stack handlers.
    """
    log_dir = os.path.expanduser(log_dir or settings.LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.abspath(os.path.join(log_dir, "sshmedic.jsonl"))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    if any(getattr(h, "baseFilename", None) == log_file for h in logger.handlers):
        return logger

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(JSONLFormatter())
    logger.addHandler(handler)
    return logger


def log_event(event, data=None):
    """Emit a structured event. Secrets in *data* are redacted first."""
    from sshmedic.safety import redact_data

    logging.getLogger(LOGGER_NAME).info(event, extra={"data": redact_data(data or {})})
