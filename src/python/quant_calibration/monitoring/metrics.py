"""
Prometheus metrics for calibration runs.

``CalibrationMetrics`` is a diagnostics sink: pass it (alone or inside a
``CompositeDiagnostics``) to the orchestrator and it counts runs, objective
evaluations and excluded instruments, and records the last run's quality.

Each collector owns its own ``CollectorRegistry`` unless one is given, so
several collectors can coexist in one process (and in tests).

Example:
    >>> metrics = CalibrationMetrics(model="hull_white")
    >>> orchestrator = CalibrationOrchestrator(build_context, diagnostics=metrics)
    >>> print(metrics.get_metrics_text())
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from ..errors import CalculationFailure, InstrumentEvaluationError
from .diagnostics import CalibrationRecord, DiagnosticsSink

logger = logging.getLogger(__name__)


class CalibrationMetrics(DiagnosticsSink):
    """
    Prometheus-backed calibration metrics.

    Args:
        model: Label identifying the calibrated model family
        registry: Registry to register the metrics in (a private one by default)
    """

    def __init__(self, model: str = "default", registry: Optional[CollectorRegistry] = None):
        self.model = model
        self.registry = registry or CollectorRegistry()
        self._server_started = False

        self.runs = Counter(
            "calibration_runs_total",
            "Calibration runs by outcome",
            ["model", "outcome"],
            registry=self.registry,
        )
        self.evaluations = Counter(
            "calibration_objective_evaluations_total",
            "Objective function evaluations",
            ["model"],
            registry=self.registry,
        )
        self.instrument_failures = Counter(
            "calibration_instrument_failures_total",
            "Instrument valuations replaced by a zero residual",
            ["model", "instrument"],
            registry=self.registry,
        )
        self.iterations = Gauge(
            "calibration_iterations",
            "Optimizer iterations of the last run",
            ["model"],
            registry=self.registry,
        )
        self.accuracy = Gauge(
            "calibration_rms_error",
            "RMS residual achieved by the last run",
            ["model"],
            registry=self.registry,
        )
        self.duration = Histogram(
            "calibration_duration_seconds",
            "Wall-clock duration of calibration runs",
            ["model"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0),
            registry=self.registry,
        )

    def start_server(self, port: int = 9090) -> None:
        """Expose the registry over HTTP for scraping."""
        if not self._server_started:
            start_http_server(port, registry=self.registry)
            self._server_started = True
            logger.info(f"Calibration metrics server started on port {port}")

    def evaluation_completed(
        self, evaluation: int, rms: float, parameters: np.ndarray
    ) -> None:
        self.evaluations.labels(model=self.model).inc()

    def instrument_failed(self, error: InstrumentEvaluationError) -> None:
        self.instrument_failures.labels(
            model=self.model, instrument=str(error.index)
        ).inc()

    def run_completed(self, record: CalibrationRecord) -> None:
        self.runs.labels(model=self.model, outcome=record.termination).inc()
        self.iterations.labels(model=self.model).set(record.iterations)
        self.accuracy.labels(model=self.model).set(record.accuracy_achieved)
        self.duration.labels(model=self.model).observe(record.elapsed_seconds)

    def run_failed(self, run_id: str, error: CalculationFailure) -> None:
        self.runs.labels(model=self.model, outcome="failed").inc()
        self.iterations.labels(model=self.model).set(error.iterations)

    def get_metrics_text(self) -> str:
        """Metrics in Prometheus exposition format."""
        return generate_latest(self.registry).decode("utf-8")

    def get_summary(self) -> Dict[str, Any]:
        """Current metric values for this collector's model label."""
        def sample(name: str, **labels) -> float:
            value = self.registry.get_sample_value(name, {"model": self.model, **labels})
            return value or 0.0

        failures: Dict[str, float] = {}
        for metric in self.registry.collect():
            if metric.name != "calibration_instrument_failures":
                continue
            for s in metric.samples:
                if s.name.endswith("_total") and s.labels.get("model") == self.model:
                    failures[s.labels["instrument"]] = s.value

        return {
            "model": self.model,
            "evaluations": sample("calibration_objective_evaluations_total"),
            "iterations": sample("calibration_iterations"),
            "rms_error": sample("calibration_rms_error"),
            "instrument_failures": failures,
        }
