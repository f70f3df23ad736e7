"""Structured JSON Logging with Correlation ID Support"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Iterable, Optional
from contextvars import ContextVar

from ..config.settings import EngineSettings, get_settings

ROOT_LOGGER = "stepflow"

# Correlation ID of the caller's request/job, if it set one
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Engine fields callers pass via extra={...}
EXTRA_FIELDS = (
    "event",
    "instance_id",
    "definition_key",
    "definition_version",
    "step_id",
    "status",
    "attempt",
    "operation_key",
)

_MAX_BYTES = 10 * 1024 * 1024  # 10MB
_BACKUP_COUNT = 5


class JsonFormatter(logging.Formatter):
    """One JSON object per record; engine fields set to None are left out"""

    def __init__(self, fields: Iterable[str] = EXTRA_FIELDS):
        super().__init__()
        self.fields = tuple(fields)

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_obj: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_obj["correlation_id"] = correlation_id

        for field in self.fields:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # Step outputs may hold datetimes, Decimals, etc.
        return json.dumps(log_obj, default=str)


def _rotating_handler(path: str, formatter: logging.Formatter, level: int = logging.NOTSET) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(settings: Optional[EngineSettings] = None) -> logging.Logger:
    """
    Configure the 'stepflow' logger tree

    The host application's root logger is left alone; call again to
    reconfigure (existing handlers are closed and replaced).
    """
    settings = settings or get_settings()
    formatter = JsonFormatter()

    engine_logger = logging.getLogger(ROOT_LOGGER)
    engine_logger.setLevel(getattr(logging, settings.log_level.upper()))
    for handler in list(engine_logger.handlers):
        handler.close()
    engine_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    engine_logger.addHandler(console_handler)

    if settings.file_logging_enabled:
        os.makedirs(settings.logs_path, exist_ok=True)
        engine_logger.addHandler(_rotating_handler(os.path.join(settings.logs_path, "engine.log"), formatter))
        engine_logger.addHandler(
            _rotating_handler(os.path.join(settings.logs_path, "error.log"), formatter, logging.ERROR)
        )

    logging.getLogger("pymongo").setLevel(logging.WARNING)
    return engine_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Set correlation ID in context"""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from context"""
    return correlation_id_var.get()
