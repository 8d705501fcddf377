"""Structured logging configuration.

This module provides JSON-formatted logging for:
- Integration with log aggregation systems
- Correlating batch-level events with their run and document
- Machine-readable log output
"""

import json
import logging
from datetime import datetime, timezone


# Context keys copied from logger.info(..., extra={...}) into the JSON record
EXTRA_KEYS = (
    "run_id",
    "document_id",
    "batch_index",
    "run_number",
    "error_code",
    "service",
    "duration_ms",
    "retry_attempt",
    "signature",
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs logs as JSON with standard fields plus any extra context
    provided via the 'extra' parameter in logger calls.

    Example:
        >>> logger.info("Batch done", extra={"run_id": "abc", "batch_index": 2})
        # Output: {"timestamp": "2026-10-18T10:52:00Z", "level": "INFO",
        #          "message": "Batch done", "run_id": "abc", "batch_index": 2}
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string with log data
        """
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .replace(tzinfo=None)
            .isoformat()
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


def configure_structured_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure logging for the library's host process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatter (True) or plain text (False)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def configure_from_settings() -> None:
    """Configure logging from FORMEXTRACT_LOG_* environment settings."""
    from formextract.core.settings import get_settings

    settings = get_settings()
    configure_structured_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
