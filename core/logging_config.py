"""
Logging Configuration for the PinPrompt API.

This module provides the centralized logging setup for the application. It
supports structured JSON logging for deployed environments and color-coded,
human-readable logs for development, and carries a request correlation ID into
every record so that all logs of one request (or one WebSocket session) can be
grouped.

Key Components:
- `CorrelationFilter`: Injects the current correlation ID into log records.
- `StructuredFormatter`: Outputs log records as JSON, including `extra` fields.
- `ColoredConsoleFormatter`: Adds color to log levels for a development console.
- `get_logging_config`: Builds the `dictConfig` dictionary from settings.
- `setup_logging`: Initializes logging for the whole application.
- `log_function_call`: Decorator logging entry, exit and execution time of sync
  and async callables.

Design:
- The correlation ID lives in a `ContextVar`, so it follows the asyncio task
  that serves a request even with many requests interleaving on one loop.
- Application loggers (`api`, `services`, `core`, `providers`) are configured
  explicitly; modules log through `logging.getLogger(__name__)`.
"""

import functools
import inspect
import json
import logging
import logging.config
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

from core.config import settings

# Context variable for request correlation ID
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "correlation_id",
}


class CorrelationFilter(logging.Filter):
    """Filter that adds correlation ID to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        corr_id = correlation_id.get()
        if corr_id:
            record.correlation_id = corr_id
        return True


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET

        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        corr_id = getattr(record, "correlation_id", None)
        corr_part = f" [{corr_id}]" if corr_id else ""

        formatted = f"{color}[{timestamp}] {record.levelname:8} {record.name}{corr_part}: {record.getMessage()}{reset}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class StructuredFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        corr_id = getattr(record, "correlation_id", None) or correlation_id.get()
        if corr_id:
            log_entry["correlation_id"] = corr_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, default=str)


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration based on environment"""

    log_level = settings.log_level
    console_formatter = (
        "colored_console" if settings.is_development else "structured"
    )

    def app_logger() -> Dict[str, Any]:
        return {"level": log_level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "correlation": {"()": CorrelationFilter},
        },
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "colored_console": {
                "()": ColoredConsoleFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": console_formatter,
                "filters": ["correlation"],
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            # Application loggers
            "api": app_logger(),
            "services": app_logger(),
            "core": app_logger(),
            "providers": app_logger(),
            # Third-party loggers
            "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.access": {
                "level": "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            "sqlalchemy.engine": {"level": "WARNING"},
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging():
    """Initialize logging configuration"""
    logging.config.dictConfig(get_logging_config())

    logger = logging.getLogger("core.logging")
    logger.info(f"Logging initialized for {settings.environment} environment")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name"""
    return logging.getLogger(name)


def set_correlation_id(corr_id: str):
    """Set correlation ID for the current context"""
    correlation_id.set(corr_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from the current context"""
    return correlation_id.get()


def log_function_call(logger: logging.Logger):
    """Decorator to log function calls with parameters and execution time"""

    def decorator(func):
        def _log_start():
            logger.debug(
                f"Calling {func.__name__}",
                extra={"function_name": func.__name__},
            )

        def _log_end(start_time: float, error: Optional[Exception] = None):
            execution_ms = round((time.time() - start_time) * 1000, 2)
            if error is None:
                logger.debug(
                    f"Completed {func.__name__}",
                    extra={
                        "function_name": func.__name__,
                        "execution_time_ms": execution_ms,
                        "success": True,
                    },
                )
            else:
                logger.error(
                    f"Failed {func.__name__}: {error}",
                    extra={
                        "function_name": func.__name__,
                        "execution_time_ms": execution_ms,
                        "success": False,
                        "error_type": type(error).__name__,
                    },
                )

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            _log_start()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_end(start_time, e)
                raise
            _log_end(start_time)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            _log_start()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_end(start_time, e)
                raise
            _log_end(start_time)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
