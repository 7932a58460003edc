"""
Structured logging for the explainability system.

Provides:
- JSON and human-readable log formats
- Contextual metadata and correlation IDs per explanation
- Log categories for the stages of an explanation
- Explanation summaries for audit trails
- Rotating file handlers
- TRACE level logging for per-batch and per-coalition detail
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


# =============================================================================
# TRACE Level Logging (below DEBUG)
# =============================================================================

# Lower than DEBUG (10)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    """Log a message at TRACE level.

    TRACE level is for ultra-detailed debugging, such as:
    - Every prediction batch sent to the model
    - Coalition layer allocation
    - Forward selection steps of the regularizer

    Args:
        message: Log message.
        *args: Positional arguments for message formatting.
        **kwargs: Keyword arguments for logging.
    """
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore[attr-defined]


class LogCategory(str, Enum):
    """Log categories for the stages of an explanation."""

    SYSTEM = "SYSTEM"
    VALIDATION = "VALIDATION"
    SAMPLING = "SAMPLING"
    EVALUATION = "EVALUATION"
    REGRESSION = "REGRESSION"
    EXPLANATION = "EXPLANATION"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    TEXT = "text"


class ExplanationLogEntry(BaseModel):
    """Summary of one finished explanation."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str
    model_name: str
    n_features: int
    n_varying: int
    n_coalitions: int
    exhaustive: bool
    duration_ms: float
    outputs: dict[str, dict[str, float]] = Field(default_factory=dict)
    counterfactuals: int = 0


class StructuredLogRecord(BaseModel):
    """Structured log record with metadata."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    level: str
    category: LogCategory
    message: str
    correlation_id: str | None = None
    model_name: str | None = None
    output_name: str | None = None
    extra_data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Convert to JSON string."""
        data = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "category": self.category.value,
            "message": self.message,
        }
        if self.correlation_id:
            data["correlation_id"] = self.correlation_id
        if self.model_name:
            data["model_name"] = self.model_name
        if self.output_name:
            data["output_name"] = self.output_name
        if self.extra_data:
            data["extra_data"] = self.extra_data
        return json.dumps(data, default=str)

    def to_text(self) -> str:
        """Convert to human-readable text."""
        parts = [
            self.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{self.level:8s}]",
            f"[{self.category.value:11s}]",
        ]
        if self.correlation_id:
            parts.append(f"[{self.correlation_id[:8]}]")
        if self.model_name:
            parts.append(f"[{self.model_name}]")
        parts.append(self.message)
        if self.extra_data:
            parts.append(f"| {self.extra_data}")
        return " ".join(parts)


_OPTIONAL_FIELDS = ("correlation_id", "model_name", "output_name", "extra_data")


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        super().__init__()
        self.category = category

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "category": getattr(record, "category", self.category.value),
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in _OPTIONAL_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development."""

    def __init__(self, category: LogCategory = LogCategory.SYSTEM) -> None:
        super().__init__()
        self.category = category

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as human-readable text."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        category = getattr(record, "category", self.category.value)

        parts = [
            timestamp,
            f"[{record.levelname:8s}]",
            f"[{category:11s}]",
        ]
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            parts.append(f"[{correlation_id[:8]}]")
        model_name = getattr(record, "model_name", None)
        if model_name:
            parts.append(f"[{model_name}]")

        parts.append(record.getMessage())

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            parts.append(f"| {extra_data}")

        message = " ".join(parts)
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter carrying a category, a correlation id and extra context."""

    def __init__(
        self,
        logger: logging.Logger,
        category: LogCategory = LogCategory.SYSTEM,
        correlation_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the context logger.

        Args:
            logger: Base logger instance.
            category: Log category.
            correlation_id: Optional correlation ID, generated when omitted.
            context: Fields attached to every record.
        """
        super().__init__(logger, {})
        self.category = category
        self.correlation_id = correlation_id or str(uuid4())
        self.context = dict(context or {})

    def process(
        self,
        msg: str,
        kwargs: dict[str, Any],
    ) -> tuple[str, dict[str, Any]]:
        """Attach category, correlation id and context to the record."""
        extra = kwargs.get("extra", {})
        extra.setdefault("category", self.category.value)
        extra.setdefault("correlation_id", self.correlation_id)
        for key, value in self.context.items():
            if key == "extra_data":
                extra["extra_data"] = {**value, **extra.get("extra_data", {})}
            else:
                extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(
        self,
        category: LogCategory | None = None,
        model_name: str | None = None,
        output_name: str | None = None,
        **extra_data: Any,
    ) -> ContextLogger:
        """Create a logger sharing this correlation id with added context.

        Args:
            category: Category replacing the current one.
            model_name: Name of the explained model.
            output_name: Name of the output being processed.
            **extra_data: Additional context data.

        Returns:
            New ContextLogger with added context.
        """
        context = dict(self.context)
        if model_name:
            context["model_name"] = model_name
        if output_name:
            context["output_name"] = output_name
        if extra_data:
            context["extra_data"] = {**context.get("extra_data", {}), **extra_data}
        return ContextLogger(self.logger, category or self.category, self.correlation_id, context)

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at TRACE level."""
        self.log(TRACE, msg, *args, **kwargs)


def setup_logging(
    level: str = "INFO",
    log_format: LogFormat = LogFormat.JSON,
    log_file: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Set up logging for the application.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json or text).
        log_file: Optional log file path.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files kept.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.getLevelName(level.upper()))

    root_logger.handlers.clear()

    if LogFormat(log_format) == LogFormat.JSON:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = TextFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        except OSError as e:
            root_logger.warning(f"Failed to set up file logging: {e}")
        else:
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)


def setup_logging_from_settings(settings: Any = None) -> None:
    """Set up logging from the application's LoggingSettings."""
    if settings is None:
        from explainability_system.config.settings import get_settings

        settings = get_settings()
    cfg = settings.logging
    setup_logging(
        level=cfg.level,
        log_format=LogFormat(cfg.format),
        log_file=cfg.file_path,
        max_bytes=cfg.max_bytes,
        backup_count=cfg.backup_count,
    )


@lru_cache(maxsize=32)
def get_logger(
    name: str,
    category: LogCategory = LogCategory.SYSTEM,
    correlation_id: str | None = None,
) -> ContextLogger:
    """Get a context logger for a component.

    Args:
        name: Logger name.
        category: Log category.
        correlation_id: Optional correlation ID.

    Returns:
        ContextLogger instance.
    """
    return ContextLogger(logging.getLogger(name), category, correlation_id)


def new_explanation_logger(name: str, model_name: str | None = None) -> ContextLogger:
    """Create an uncached logger with a fresh correlation id for one explanation."""
    logger = ContextLogger(logging.getLogger(name), LogCategory.EXPLANATION)
    return logger.with_context(model_name=model_name) if model_name else logger


# Convenience functions for quick logging
def log_explanation(entry: ExplanationLogEntry, level: str = "INFO") -> None:
    """Log the summary of a finished explanation."""
    logger = get_logger("explanation", LogCategory.EXPLANATION)
    getattr(logger, level.lower())(
        f"Explanation of {entry.model_name}: {entry.n_varying}/{entry.n_features} varying features, "
        f"{entry.n_coalitions} coalitions in {entry.duration_ms:.1f}ms",
        extra={
            "correlation_id": entry.correlation_id,
            "model_name": entry.model_name,
            "extra_data": entry.model_dump(mode="json", exclude={"correlation_id", "model_name"}),
        },
    )


# =============================================================================
# TRACE Level Convenience Functions
# =============================================================================


def log_trace(
    category: LogCategory,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a trace-level message for ultra-detailed debugging.

    Args:
        category: Log category.
        message: Log message.
        **kwargs: Additional context data.
    """
    logger = get_logger(category.value.lower(), category)
    logger.trace(message, extra={"extra_data": kwargs})


def trace_latency(
    operation: str,
    latency_ms: float,
    component: str | None = None,
) -> None:
    """Trace-log operation latency.

    Args:
        operation: Operation name.
        latency_ms: Latency in milliseconds.
        component: Optional component name.
    """
    message = f"Latency: {operation}={latency_ms:.3f}ms"
    if component:
        message = f"[{component}] {message}"
    log_trace(
        LogCategory.SYSTEM,
        message,
        operation=operation,
        latency_ms=latency_ms,
        component=component,
    )
