"""Logging setup for the store service and client sessions."""
import json
import logging
import sys
from datetime import datetime, timezone

from payflow.config import Settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(settings: Settings) -> logging.Logger:
    """
    Attach a single console handler to the ``payflow`` logger.

    Module loggers (``logging.getLogger(__name__)``) inherit from it, so this
    only needs to run once at process start.
    """
    level = getattr(logging, settings.log_level, logging.INFO)

    logger = logging.getLogger("payflow")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if settings.json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
