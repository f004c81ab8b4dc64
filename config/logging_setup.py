"""
Logging setup for Groundline Support Bot.

Human-readable output by default; a minimal JSON formatter when
LOG_JSON is enabled. Structured fields passed through ``extra=`` are
carried into the JSON record.
"""

import json
import logging
from typing import Optional

# Fields the pipeline attaches via ``extra=``
STRUCTURED_FIELDS = (
    "org_id",
    "conversation_id",
    "customer_id",
    "message_id",
    "escalation_id",
    "doc_id",
    "outcome",
    "latency_ms",
    "confidence",
    "tokens_used",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                log_record[key] = getattr(record, key)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(level: str = "INFO", json_format: bool = False, stream: Optional[object] = None):
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: Emit JSON lines instead of plain text
        stream: Optional stream for the handler (defaults to stderr)
    """
    handler = logging.StreamHandler(stream)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Quiet chatty client libraries
    for noisy in ("httpx", "httpcore", "openai", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
