"""
Tests for the monitoring module.

Tests cover:
- Structured logging: context binding, formatters, configure_logging
- Diagnostics sinks: logging, recording, composite
- Prometheus calibration metrics
"""

import json
import logging

import numpy as np
import pytest
from prometheus_client import CollectorRegistry

from quant_calibration.errors import CalculationFailure, InstrumentEvaluationError
from quant_calibration.monitoring import (
    CalibrationMetrics,
    CalibrationRecord,
    CompositeDiagnostics,
    LoggingDiagnostics,
    RecordingDiagnostics,
)


def make_record(**overrides):
    values = dict(
        run_id="abc123",
        iterations=12,
        accuracy_achieved=3e-9,
        parameters=np.array([0.1, 0.2]),
        termination="converged",
        evaluations=40,
        instrument_failures={},
        elapsed_seconds=0.25,
    )
    values.update(overrides)
    return CalibrationRecord(**values)


class TestStructuredLogging:
    """Tests for structured logging framework."""

    def test_get_logger(self):
        """Test getting a structured logger."""
        from quant_calibration.monitoring.logging import LogCategory, get_logger

        logger = get_logger("test_logger", LogCategory.CALIBRATION)
        assert logger is not None
        assert logger.name == "test_logger"

    def test_log_context_binding(self):
        """Test binding context to logs."""
        from quant_calibration.monitoring.logging import (
            bind,
            clear_context,
            get_context,
            unbind,
        )

        clear_context()

        bind(run_id="abc", model="hull_white")
        context = get_context()
        assert context.get("run_id") == "abc"
        assert context.get("model") == "hull_white"

        unbind("model")
        assert context.get("model") is None

        clear_context()
        assert len(context.fields) == 0

    def test_bound_logger_context_manager(self):
        """Test BoundLogger restores previous values."""
        from quant_calibration.monitoring.logging import (
            BoundLogger,
            bind,
            clear_context,
            get_context,
        )

        clear_context()
        bind(run_id="outer")

        with BoundLogger(run_id="inner", phase="evaluating"):
            context = get_context()
            assert context.get("run_id") == "inner"
            assert context.get("phase") == "evaluating"

        assert get_context().get("run_id") == "outer"
        assert get_context().get("phase") is None
        clear_context()

    def test_with_log_context_crosses_threads(self):
        """Test that wrapped calls see the submitting thread's context."""
        import threading

        from quant_calibration.monitoring.logging import (
            BoundLogger,
            clear_context,
            get_context,
            with_log_context,
        )

        clear_context()
        seen = {}

        def worker():
            seen["run_id"] = get_context().get("run_id")

        with BoundLogger(run_id="abc123"):
            wrapped = with_log_context(worker)

        thread = threading.Thread(target=wrapped)
        thread.start()
        thread.join()

        assert seen["run_id"] == "abc123"
        assert get_context().get("run_id") is None

        unwrapped = threading.Thread(target=lambda: seen.update(bare=get_context().copy()))
        unwrapped.start()
        unwrapped.join()
        assert seen["bare"] == {}

    def test_json_formatter(self):
        """Test JSON log formatting with extra fields."""
        from quant_calibration.monitoring.logging import JsonFormatter

        formatter = JsonFormatter(include_context=False)
        record = logging.LogRecord(
            name="test",
            level=logging.DEBUG,
            pathname="test.py",
            lineno=1,
            msg="Calibration finished",
            args=(),
            exc_info=None,
        )
        record.parameters = np.array([0.1, 0.2])
        record.iterations = 12

        parsed = json.loads(formatter.format(record))
        assert parsed["message"] == "Calibration finished"
        assert parsed["level"] == "DEBUG"
        assert parsed["parameters"] == [0.1, 0.2]
        assert parsed["iterations"] == 12
        assert "@timestamp" in parsed

    def test_console_formatter(self):
        """Test console log formatting."""
        from quant_calibration.monitoring.logging import ConsoleFormatter

        formatter = ConsoleFormatter(include_context=False)
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Console test",
            args=(),
            exc_info=None,
        )

        output = formatter.format(record)
        assert "Console test" in output
        assert "INFO" in output

    def test_configure_logging(self, tmp_path):
        """Test handler installation on the package logger."""
        from quant_calibration.monitoring.logging import PACKAGE_LOGGER, configure_logging

        log_file = tmp_path / "calibration.log"
        handlers = configure_logging(
            level="DEBUG", console_output=False, file_output=str(log_file)
        )
        try:
            assert len(handlers) == 1
            logging.getLogger("quant_calibration.test").debug("to file")
            handlers[0].flush()
            line = log_file.read_text().strip().splitlines()[-1]
            assert json.loads(line)["message"] == "to file"
        finally:
            package_logger = logging.getLogger(PACKAGE_LOGGER)
            for handler in handlers:
                package_logger.removeHandler(handler)
                handler.close()
            package_logger.setLevel(logging.NOTSET)


class TestDiagnostics:
    """Tests for diagnostics sinks."""

    def test_record_to_dict(self):
        data = make_record(instrument_failures={2: 5}).to_dict()
        assert data["parameters"] == [0.1, 0.2]
        assert data["instrument_failures"] == {2: 5}
        assert data["termination"] == "converged"

    def test_logging_diagnostics_debug_record(self, caplog):
        """Test that the run record is logged at DEBUG only."""
        sink = LoggingDiagnostics()
        with caplog.at_level(logging.DEBUG, logger="quant_calibration"):
            sink.run_completed(make_record())

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.levelno == logging.DEBUG
        assert record.iterations == 12
        assert record.accuracy_achieved == 3e-9
        assert record.parameters == [0.1, 0.2]

    def test_logging_diagnostics_silent_above_debug(self, caplog):
        sink = LoggingDiagnostics()
        with caplog.at_level(logging.INFO, logger="quant_calibration"):
            sink.run_completed(make_record())
            sink.evaluation_completed(1, 0.1, np.array([0.1]))
        assert caplog.records == []

    def test_logging_diagnostics_warns_on_exclusions(self, caplog):
        sink = LoggingDiagnostics()
        with caplog.at_level(logging.INFO, logger="quant_calibration"):
            sink.run_completed(make_record(instrument_failures={3: 7}))

        assert [r.levelno for r in caplog.records] == [logging.WARNING]

    def test_logging_diagnostics_error_on_failure(self, caplog):
        sink = LoggingDiagnostics()
        failure = CalculationFailure("Calibration failed", RuntimeError("x"), iterations=4)
        with caplog.at_level(logging.INFO, logger="quant_calibration"):
            sink.run_failed("abc123", failure)

        assert caplog.records[0].levelno == logging.ERROR
        assert caplog.records[0].iterations == 4

    def test_recording_and_composite(self):
        first, second = RecordingDiagnostics(), RecordingDiagnostics()
        sink = CompositeDiagnostics([first, second])
        error = InstrumentEvaluationError(1, "product", cause=ValueError("bad"))

        sink.phase_changed("abc", "evaluating")
        sink.instrument_failed(error)
        sink.evaluation_completed(1, 0.5, np.array([1.0]))
        sink.run_completed(make_record())

        for recording in (first, second):
            assert recording.phases == [("abc", "evaluating")]
            assert recording.failures == [error]
            assert recording.evaluations[0][:2] == (1, 0.5)
            assert len(recording.records) == 1


class TestCalibrationMetrics:
    """Tests for Prometheus calibration metrics."""

    def test_isolated_registries(self):
        """Test that collectors do not share registries."""
        first = CalibrationMetrics(model="sabr")
        second = CalibrationMetrics(model="sabr")
        assert first.registry is not second.registry

    def test_counts_evaluations_and_failures(self):
        metrics = CalibrationMetrics(model="sabr", registry=CollectorRegistry())
        metrics.evaluation_completed(1, 0.1, np.array([0.2]))
        metrics.evaluation_completed(2, 0.05, np.array([0.2]))
        metrics.instrument_failed(InstrumentEvaluationError(3, "p", cause=ValueError()))

        summary = metrics.get_summary()
        assert summary["evaluations"] == 2
        assert summary["instrument_failures"] == {"3": 1.0}

    def test_run_completed(self):
        metrics = CalibrationMetrics(model="hull_white")
        metrics.run_completed(make_record())

        summary = metrics.get_summary()
        assert summary["iterations"] == 12
        assert summary["rms_error"] == pytest.approx(3e-9)
        assert metrics.registry.get_sample_value(
            "calibration_runs_total", {"model": "hull_white", "outcome": "converged"}
        ) == 1.0

    def test_run_failed(self):
        metrics = CalibrationMetrics(model="hull_white")
        metrics.run_failed(
            "abc", CalculationFailure("Calibration failed", RuntimeError(), iterations=3)
        )
        assert metrics.registry.get_sample_value(
            "calibration_runs_total", {"model": "hull_white", "outcome": "failed"}
        ) == 1.0

    def test_metrics_text(self):
        metrics = CalibrationMetrics(model="sabr")
        metrics.run_completed(make_record())
        text = metrics.get_metrics_text()
        assert "calibration_iterations" in text
        assert "calibration_duration_seconds" in text
