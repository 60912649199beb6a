"""
Structured logging for calibration runs.

Provides:
- Thread-local context fields (run_id, model, ...) bound for the duration
  of a calibration run and attached to every record; ``with_log_context``
  carries them into worker threads
- JSON output for log aggregation and a readable console format
- StructuredLogger: passes keyword fields through ``extra``

Nothing here changes logger levels at import time; call
``configure_logging`` from application code to install handlers.
"""

import functools
import json
import logging
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict, List, Optional

PACKAGE_LOGGER = "quant_calibration"


class LogCategory(Enum):
    """Categories for log classification."""
    CALIBRATION = "calibration"


class LogContext:
    """Context fields attached to every record emitted by one thread."""

    def __init__(self):
        self.fields: Dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self.fields[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def remove(self, key: str) -> None:
        self.fields.pop(key, None)

    def clear(self) -> None:
        self.fields.clear()

    def copy(self) -> Dict[str, Any]:
        return self.fields.copy()


_local = threading.local()


def get_context() -> LogContext:
    """Get the logging context of the current thread."""
    if not hasattr(_local, "context"):
        _local.context = LogContext()
    return _local.context


def bind(**kwargs) -> None:
    """Bind fields to the current logging context."""
    context = get_context()
    for key, value in kwargs.items():
        context.set(key, value)


def unbind(*keys: str) -> None:
    """Remove fields from the current logging context."""
    context = get_context()
    for key in keys:
        context.remove(key)


def clear_context() -> None:
    get_context().clear()


class BoundLogger:
    """
    Context manager binding fields for a block and restoring them afterwards.

    Example:
        >>> with BoundLogger(run_id="abc123"):
        ...     logger.debug("evaluating")
    """

    def __init__(self, **kwargs):
        self.bindings = kwargs
        self.previous_values: Dict[str, Any] = {}

    def __enter__(self) -> "BoundLogger":
        context = get_context()
        for key, value in self.bindings.items():
            if key in context.fields:
                self.previous_values[key] = context.fields[key]
            context.set(key, value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        context = get_context()
        for key in self.bindings:
            if key in self.previous_values:
                context.set(key, self.previous_values[key])
            else:
                context.remove(key)


def with_log_context(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Wrap ``fn`` so it runs with the caller's context fields bound.

    Context is thread-local: a call handed to a worker thread would otherwise
    log without the fields (such as ``run_id``) of the thread that submitted it.
    """
    fields = get_context().copy()

    @functools.wraps(fn)
    def run(*args, **kwargs):
        with BoundLogger(**fields):
            return fn(*args, **kwargs)

    return run


@dataclass
class StructuredLogRecord:
    """Structured log record ready for JSON serialization."""

    timestamp: datetime
    level: str
    message: str
    logger_name: str
    category: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "@timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "logger": self.logger_name,
        }
        if self.category:
            result["category"] = self.category
        if self.context:
            result["context"] = self.context
        if self.exception:
            result["exception"] = self.exception
        if self.extra:
            result.update(self.extra)
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=_json_default)


def _json_default(value: Any) -> Any:
    # numpy arrays and scalars
    if hasattr(value, "tolist"):
        return value.tolist()
    return str(value)


_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "category", "taskName",
})


class JsonFormatter(logging.Formatter):
    """JSON formatter; record ``extra`` fields become top-level keys."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        structured = StructuredLogRecord(
            timestamp=datetime.fromtimestamp(record.created),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            category=getattr(record, "category", None),
        )

        if self.include_context:
            structured.context = get_context().copy()

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                structured.extra[key] = value

        if record.exc_info:
            structured.exception = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        return structured.to_json()


class ConsoleFormatter(logging.Formatter):
    """Human-readable single-line formatter."""

    def __init__(
        self,
        include_context: bool = True,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        super().__init__()
        self.include_context = include_context
        self.timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime(self.timestamp_format)
        parts = [f"{timestamp} {record.levelname:8} [{record.name}] {record.getMessage()}"]

        if self.include_context:
            context = get_context().copy()
            if context:
                parts.append(" ".join(f"{k}={v}" for k, v in context.items()))

        text = "  | ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class StructuredLogger:
    """
    Thin wrapper around ``logging.Logger`` passing keyword fields as ``extra``.

    Example:
        >>> log = StructuredLogger("quant_calibration.run", LogCategory.CALIBRATION)
        >>> log.debug("Calibration finished", iterations=12, accuracy_achieved=3e-9)
    """

    def __init__(self, name: str, category: Optional[LogCategory] = None):
        self.name = name
        self.category = category
        self._logger = logging.getLogger(name)

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, message: str, exc_info=None, **fields) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = dict(fields)
        if self.category:
            extra["category"] = self.category.value
        self._logger.log(level, message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **fields) -> None:
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields) -> None:
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields) -> None:
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info=None, **fields) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)


def get_logger(name: str, category: Optional[LogCategory] = None) -> StructuredLogger:
    """Get a structured logger."""
    return StructuredLogger(name, category)


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    console_output: bool = True,
    file_output: Optional[str] = None,
    include_context: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> List[logging.Handler]:
    """
    Install handlers on the package logger.

    Args:
        level: Level name for the package logger
        json_output: Use JSON instead of the console format on stdout
        console_output: Log to stdout
        file_output: Optional path of a size-rotated JSON log file
        include_context: Attach thread-local context fields
        max_bytes: Rotation size of the log file
        backup_count: Number of rotated files kept

    Returns:
        The installed handlers
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    package_logger.setLevel(getattr(logging, level.upper()))

    handlers: List[logging.Handler] = []
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        if json_output:
            console_handler.setFormatter(JsonFormatter(include_context))
        else:
            console_handler.setFormatter(ConsoleFormatter(include_context))
        handlers.append(console_handler)

    if file_output:
        file_handler = RotatingFileHandler(
            file_output, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(JsonFormatter(include_context))
        handlers.append(file_handler)

    for handler in handlers:
        package_logger.addHandler(handler)

    return handlers
