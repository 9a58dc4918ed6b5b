"""
JSON logging for the bizflow data core.

Every record is written to stderr as one JSON object. Keyword arguments given
to a StructuredLogger call become top-level keys of that object, next to the
timestamp, level, logger name and message.
"""

import logging
import json
import os
from datetime import datetime
from typing import Any, Dict

LOG_LEVEL_ENV = "LOG_LEVEL"

# LogRecord attribute carrying the keyword fields of a StructuredLogger call
FIELDS_ATTR = "bizflow_fields"


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that takes keyword fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Refresh complete", customers=12)
    """

    def __init__(self, name: str, level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

        # One JSON handler per logger name, however many wrappers exist
        if not any(isinstance(h.formatter, JSONFormatter) for h in self.logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)

    def log(self, level: str, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.log(
            getattr(logging, level.upper()),
            message,
            exc_info=exc_info,
            extra={FIELDS_ATTR: fields}
        )

    def info(self, message: str, **fields):
        self.log("info", message, **fields)

    def warning(self, message: str, **fields):
        self.log("warning", message, **fields)

    def error(self, message: str, **fields):
        self.log("error", message, **fields)

    def debug(self, message: str, **fields):
        self.log("debug", message, **fields)

    def exception(self, message: str, **fields):
        """Error record with the active exception's traceback"""
        self.log("error", message, exc_info=True, **fields)


class JSONFormatter(logging.Formatter):
    """Formats a record and its keyword fields as a single JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(getattr(record, FIELDS_ATTR, None) or {})

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> StructuredLogger:
    """Logger for name, at the level named by $LOG_LEVEL (default INFO)"""
    return StructuredLogger(name, os.getenv(LOG_LEVEL_ENV, "INFO"))
