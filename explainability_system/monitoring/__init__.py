"""
Monitoring module.

Provides structured logging with correlation ids for explanations.
"""

from .logger import (
    TRACE,
    ContextLogger,
    ExplanationLogEntry,
    JsonFormatter,
    LogCategory,
    LogFormat,
    StructuredLogRecord,
    TextFormatter,
    get_logger,
    log_explanation,
    log_trace,
    new_explanation_logger,
    setup_logging,
    setup_logging_from_settings,
    trace_latency,
)

__all__ = [
    "TRACE",
    "ContextLogger",
    "ExplanationLogEntry",
    "JsonFormatter",
    "LogCategory",
    "LogFormat",
    "StructuredLogRecord",
    "TextFormatter",
    "get_logger",
    "log_explanation",
    "log_trace",
    "new_explanation_logger",
    "setup_logging",
    "setup_logging_from_settings",
    "trace_latency",
]
