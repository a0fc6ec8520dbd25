"""
Structured JSON logging for the offline storage layer.

Store, sync and health events are emitted through module loggers. Code that
logs about one table, queue item or endpoint binds that context once with
`bind_logger` and every line it writes carries it as extra fields, which the
JSON formatter lifts to the top level of each log object.
"""

import json
import logging
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import IO, Any

PACKAGE_LOGGER = "mess_offline_storage"

# Attributes every LogRecord has; anything else came in through `extra`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats each record as one JSON object.

    Fields: timestamp (UTC, taken from the record), level, logger, message,
    exception when present, any static fields given at construction, then
    the record's bound context (table, endpoint, item_id, operation...).
    """

    def __init__(self, static_fields: Mapping[str, Any] | None = None):
        super().__init__()
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        log_obj.update(self.static_fields)
        log_obj.update(_context_of(record))
        return json.dumps(log_obj, default=str)


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    context: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        context[key] = value
    return context


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
    stream: IO[str] | None = None,
    static_fields: Mapping[str, Any] | None = None,
) -> logging.Logger:
    """
    Route a logger's output through one JSON handler.

    Calling this again replaces the JSON handler it installed earlier and
    leaves handlers added by the application alone.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger,
            pass None for the root logger)
        stream: Output stream (default: stdout)
        static_fields: Fields added to every line, e.g. {"device": "a1"}

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        if isinstance(handler.formatter, StructuredJsonFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter(static_fields))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


class StorageLoggerAdapter(logging.LoggerAdapter):
    """Logger that attaches bound storage context to every record."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "StorageLoggerAdapter":
        """A new adapter with this one's context plus `context`."""
        return StorageLoggerAdapter(self.logger, {**self.extra, **context})


def bind_logger(
    logger: logging.Logger | StorageLoggerAdapter, **context: Any
) -> StorageLoggerAdapter:
    """Bind context fields (table, endpoint, item_id...) to a logger."""
    if isinstance(logger, StorageLoggerAdapter):
        return logger.bind(**context)
    return StorageLoggerAdapter(logger, context)
