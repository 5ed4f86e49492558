"""
JSON log lines for the attempt engine.

One logger per concern (see CHANNELS). Every entry carries the current
request id, a business context (attempt, quiz, user) and free-form extras
such as latencies or skip reasons.
"""

import logging
import json
import sys
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

from quizengine.config import LOG_LEVEL

# Set by the request middleware, read by every log entry of that request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

CHANNELS = ["http", "db", "durations", "gaps", "grading", "scoring", "lifecycle"]


class StructuredJsonFormatter(logging.Formatter):
    """Renders a record as {timestamp, level, message, channel, context, extra[, exception]}."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "channel": getattr(record, "channel", record.name.split(".")[-1] if "." in record.name else "app"),
            "context": {
                "request_id": request_id_var.get(""),
                **(getattr(record, "context", {}) or {})
            },
            "extra": getattr(record, "extra_data", {}) or {}
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging():
    """Route everything through one stdout JSON handler at LOG_LEVEL."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for channel in CHANNELS:
        logging.getLogger(f"quizengine.{channel}").setLevel(level)

    return root_logger


def get_logger(channel: str) -> logging.Logger:
    return logging.getLogger(f"quizengine.{channel}")


def log_with_context(logger: logging.Logger, level: str, message: str,
                     context: dict = None, extra_data: dict = None):
    """
    Log `message` on a channel logger.

    `context` identifies what the entry is about (attempt_id, quiz_id,
    user_id); `extra_data` holds measurements (duration_ms, gap_ms, skipped).
    """
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        message,
        extra={"context": context or {}, "extra_data": extra_data or {}, "channel": logger.name.split(".")[-1]}
    )


def generate_request_id() -> str:
    return str(uuid.uuid4())
