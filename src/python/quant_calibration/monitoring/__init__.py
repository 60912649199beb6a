"""
Monitoring for calibration runs: structured logging, diagnostics sinks and
Prometheus metrics.
"""

from .diagnostics import (
    CalibrationRecord,
    CompositeDiagnostics,
    DiagnosticsSink,
    LoggingDiagnostics,
    RecordingDiagnostics,
)
from .logging import (
    BoundLogger,
    ConsoleFormatter,
    JsonFormatter,
    StructuredLogger,
    bind,
    configure_logging,
    get_logger,
    unbind,
    with_log_context,
)
from .metrics import CalibrationMetrics

__all__ = [
    "CalibrationRecord",
    "CompositeDiagnostics",
    "DiagnosticsSink",
    "LoggingDiagnostics",
    "RecordingDiagnostics",
    "BoundLogger",
    "ConsoleFormatter",
    "JsonFormatter",
    "StructuredLogger",
    "bind",
    "configure_logging",
    "get_logger",
    "unbind",
    "with_log_context",
    "CalibrationMetrics",
]
