"""
Logging configuration.

- Console handler with coloured, human-readable lines for local runs.
- Rotating JSON file log (``logs/autoledger.log``) for log aggregation.
- Separate rotating error log (``logs/autoledger-error.log``) for alerting.
- Every record carries the current request id.  ``RequestIDMiddleware``
  stores it in :data:`request_id_ctx`; :class:`RequestIDFilter` copies it
  onto the record so ledger and audit lines can be tied back to a request.

Call ``setup_logging()`` once at start-up.  Modules log through
``logging.getLogger(__name__)``.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from autoledger.core.config import settings

LOG_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs"
)
LOG_FILE = "autoledger.log"
ERROR_LOG_FILE = "autoledger-error.log"

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Optional ``extra=`` keys copied into the JSON payload when present.
_EXTRA_FIELDS = (
    "status_code",
    "method",
    "path",
    "elapsed_ms",
    "client_ip",
    "investor_id",
    "commitment_id",
    "audit_ref",
)


class RequestIDFilter(logging.Filter):
    """Attach the active request id (or ``None``) to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx.get()
        return True


class JSONFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Output example::

        {"timestamp": "2026-03-02T10:30:00.123+00:00", "level": "INFO",
         "logger": "autoledger.services.allocation_ledger",
         "message": "Reserved 30000.00 for investor ...",
         "module": "allocation_ledger", "function": "reserve", "line": 88,
         "request_id": "5f0c..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_entry["request_id"] = request_id

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line formatter for terminal output."""

    COLOURS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )

        request_id = getattr(record, "request_id", None)
        rid_str = f" [{request_id[:8]}]" if request_id else ""

        base = (
            f"{timestamp} | {colour}{record.levelname:<8}{self.RESET} | "
            f"{record.name}{rid_str} | {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def _rotating_handler(filename: str, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, filename),
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RequestIDFilter())
    return handler


def setup_logging() -> None:
    """
    Configure the root logger.  Repeated calls are no-ops.

    ``DEBUG=true`` forces DEBUG everywhere and turns on SQL echo logging;
    otherwise ``LOG_LEVEL`` decides.  File rotation follows
    ``LOG_FILE_MAX_BYTES`` and ``LOG_FILE_BACKUP_COUNT``.
    """
    root_logger = logging.getLogger()

    if root_logger.handlers:
        return

    level = (
        logging.DEBUG
        if settings.DEBUG
        else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    )
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.addFilter(RequestIDFilter())
    root_logger.addHandler(console_handler)

    os.makedirs(LOG_DIR, exist_ok=True)
    root_logger.addHandler(_rotating_handler(LOG_FILE, level))
    root_logger.addHandler(_rotating_handler(ERROR_LOG_FILE, logging.ERROR))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.DEBUG else logging.WARNING
    )

    root_logger.info(
        "Logging initialized: level=%s, file=%s, max_size=%s MB, backups=%d",
        logging.getLevelName(level),
        os.path.join(LOG_DIR, LOG_FILE),
        settings.LOG_FILE_MAX_BYTES // (1024 * 1024),
        settings.LOG_FILE_BACKUP_COUNT,
    )
