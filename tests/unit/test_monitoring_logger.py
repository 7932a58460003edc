"""
Unit tests for monitoring/logger.py
"""

import json
import logging

import pytest

from explainability_system.monitoring.logger import (
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
    new_explanation_logger,
    setup_logging,
)


def make_record(message="Test message", **attributes):
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in attributes.items():
        setattr(record, key, value)
    return record


class TestLogCategory:
    """Tests for LogCategory enum."""

    def test_log_categories_exist(self):
        """Test that every explanation stage has a category."""
        assert LogCategory.SYSTEM == "SYSTEM"
        assert LogCategory.VALIDATION == "VALIDATION"
        assert LogCategory.SAMPLING == "SAMPLING"
        assert LogCategory.EVALUATION == "EVALUATION"
        assert LogCategory.REGRESSION == "REGRESSION"
        assert LogCategory.EXPLANATION == "EXPLANATION"


class TestLogFormat:
    """Tests for LogFormat enum."""

    def test_log_formats_exist(self):
        """Test that log formats are defined."""
        assert LogFormat.JSON == "json"
        assert LogFormat.TEXT == "text"


class TestStructuredLogRecord:
    """Tests for StructuredLogRecord model."""

    def test_to_json(self):
        """Test JSON serialization keeps only populated optional fields."""
        record = StructuredLogRecord(
            level="INFO",
            category=LogCategory.SAMPLING,
            message="14 coalitions",
            correlation_id="abc-123",
            extra_data={"exhaustive": True},
        )
        data = json.loads(record.to_json())
        assert data["category"] == "SAMPLING"
        assert data["correlation_id"] == "abc-123"
        assert data["extra_data"] == {"exhaustive": True}
        assert "model_name" not in data

    def test_to_text(self):
        """Test text output."""
        record = StructuredLogRecord(
            level="WARNING",
            category=LogCategory.REGRESSION,
            message="Non-finite outputs",
            correlation_id="1234567890abcdef",
            model_name="sum",
        )
        text = record.to_text()
        assert "[WARNING " in text
        assert "[12345678]" in text
        assert "[sum]" in text
        assert text.endswith("Non-finite outputs")


class TestFormatters:
    """Tests for JsonFormatter and TextFormatter."""

    def test_json_formatter(self):
        """Test JSON formatting of a record with context."""
        record = make_record(category="EVALUATION", correlation_id="cid", model_name="sum")
        data = json.loads(JsonFormatter().format(record))
        assert data["message"] == "Test message"
        assert data["category"] == "EVALUATION"
        assert data["correlation_id"] == "cid"
        assert data["model_name"] == "sum"
        assert data["line"] == 10

    def test_json_formatter_default_category(self):
        """Test records without a category use the formatter's."""
        data = json.loads(JsonFormatter(LogCategory.VALIDATION).format(make_record()))
        assert data["category"] == "VALIDATION"

    def test_text_formatter(self):
        """Test text formatting."""
        record = make_record(category="SAMPLING", extra_data={"m": 4})
        text = TextFormatter().format(record)
        assert "[INFO    ]" in text
        assert "SAMPLING" in text
        assert "Test message" in text
        assert "| {'m': 4}" in text


class TestContextLogger:
    """Tests for ContextLogger."""

    def test_generates_correlation_id(self):
        """Test a correlation id is generated when none is given."""
        logger = ContextLogger(logging.getLogger("test"))
        assert logger.correlation_id

    def test_process_adds_context(self):
        """Test category, correlation id and context are attached."""
        logger = ContextLogger(
            logging.getLogger("test"),
            LogCategory.EVALUATION,
            correlation_id="cid",
            context={"model_name": "sum", "extra_data": {"batch": 1}},
        )
        _, kwargs = logger.process("msg", {"extra": {"extra_data": {"rows": 3}}})
        extra = kwargs["extra"]
        assert extra["category"] == "EVALUATION"
        assert extra["correlation_id"] == "cid"
        assert extra["model_name"] == "sum"
        assert extra["extra_data"] == {"batch": 1, "rows": 3}

    def test_explicit_extra_wins(self):
        """Test values passed at the call site are not overwritten."""
        logger = ContextLogger(logging.getLogger("test"), correlation_id="cid")
        _, kwargs = logger.process("msg", {"extra": {"correlation_id": "other"}})
        assert kwargs["extra"]["correlation_id"] == "other"

    def test_with_context_shares_correlation_id(self):
        """Test derived loggers keep the correlation id."""
        logger = ContextLogger(logging.getLogger("test"), LogCategory.EXPLANATION)
        derived = logger.with_context(category=LogCategory.REGRESSION, output_name="o0", step=2)
        assert derived.correlation_id == logger.correlation_id
        assert derived.category == LogCategory.REGRESSION
        assert derived.context == {"output_name": "o0", "extra_data": {"step": 2}}
        assert logger.context == {}

    def test_trace_level(self, caplog):
        """Test TRACE messages are emitted below DEBUG."""
        logger = ContextLogger(logging.getLogger("test.trace"))
        with caplog.at_level(TRACE, logger="test.trace"):
            logger.trace("fine detail")
        assert caplog.records[-1].levelno == TRACE
        assert caplog.records[-1].levelname == "TRACE"


class TestExplanationLogging:
    """Tests for explanation loggers and summaries."""

    def test_new_explanation_logger_is_fresh(self):
        """Test each explanation logger gets its own correlation id."""
        first = new_explanation_logger("test", model_name="sum")
        second = new_explanation_logger("test", model_name="sum")
        assert first.correlation_id != second.correlation_id
        assert first.category == LogCategory.EXPLANATION
        assert first.context["model_name"] == "sum"

    def test_get_logger_is_cached(self):
        """Test component loggers are cached."""
        assert get_logger("component") is get_logger("component")

    def test_log_explanation(self, caplog):
        """Test the summary record carries the entry's fields."""
        entry = ExplanationLogEntry(
            correlation_id="cid",
            model_name="sum",
            n_features=5,
            n_varying=4,
            n_coalitions=14,
            exhaustive=True,
            duration_ms=12.5,
            outputs={"sum-but1": {"baseline": 14.67}},
        )
        with caplog.at_level(logging.INFO, logger="explanation"):
            log_explanation(entry)
        record = caplog.records[-1]
        assert record.correlation_id == "cid"
        assert record.model_name == "sum"
        assert record.category == "EXPLANATION"
        assert record.extra_data["n_coalitions"] == 14
        assert "4/5 varying features" in record.getMessage()


class TestPackageExports:
    """Tests for the monitoring package surface."""

    def test_exports_resolve(self):
        """Test every exported name exists and comes from the logger module."""
        import explainability_system.monitoring as monitoring
        from explainability_system.monitoring import logger as logger_module

        for name in monitoring.__all__:
            assert getattr(monitoring, name) is getattr(logger_module, name)


class TestSetupLogging:
    """Tests for setup_logging function."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_console(self):
        """Test console handler with JSON formatting."""
        setup_logging(level="DEBUG", log_format=LogFormat.JSON)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_text_with_file(self, tmp_path):
        """Test file logging with rotation."""
        log_file = tmp_path / "logs" / "explainer.log"
        setup_logging(level="INFO", log_format=LogFormat.TEXT, log_file=log_file)
        root = logging.getLogger()
        assert len(root.handlers) == 2
        assert all(isinstance(h.formatter, TextFormatter) for h in root.handlers)
        assert log_file.parent.exists()
