"""
Calibration diagnostics sinks.

The orchestrator, objective function and residual evaluator report what
happens during a run to a ``DiagnosticsSink`` passed in by the caller:

    phase_changed         state machine transitions of a run
    evaluation_completed  one objective evaluation (RMS, parameters)
    instrument_failed     an instrument was excluded from one evaluation
    run_completed         per-run record {iterations, accuracy, parameters}
    run_failed            the run ended with a CalculationFailure

Hooks may be called from worker threads.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..errors import CalculationFailure, InstrumentEvaluationError
from .logging import LogCategory, StructuredLogger


@dataclass
class CalibrationRecord:
    """Summary of one finished calibration run."""

    run_id: str
    iterations: int
    accuracy_achieved: float
    parameters: np.ndarray
    termination: str
    evaluations: int
    instrument_failures: Dict[int, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "run_id": self.run_id,
            "iterations": self.iterations,
            "accuracy_achieved": self.accuracy_achieved,
            "parameters": [float(p) for p in self.parameters],
            "termination": self.termination,
            "evaluations": self.evaluations,
            "instrument_failures": dict(self.instrument_failures),
            "elapsed_seconds": self.elapsed_seconds,
        }


class DiagnosticsSink:
    """Base sink; every hook is a no-op."""

    def phase_changed(self, run_id: str, phase: Any) -> None:
        pass

    def evaluation_completed(
        self, evaluation: int, rms: float, parameters: np.ndarray
    ) -> None:
        pass

    def instrument_failed(self, error: InstrumentEvaluationError) -> None:
        pass

    def run_completed(self, record: CalibrationRecord) -> None:
        pass

    def run_failed(self, run_id: str, error: CalculationFailure) -> None:
        pass


class LoggingDiagnostics(DiagnosticsSink):
    """
    Sink writing structured log records.

    Everything is logged at DEBUG except a single WARNING per run when
    instruments had to be excluded, and an ERROR when a run fails.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or StructuredLogger(
            "quant_calibration.calibration", LogCategory.CALIBRATION
        )

    def phase_changed(self, run_id: str, phase: Any) -> None:
        self.logger.debug(
            f"Calibration {run_id} entered {getattr(phase, 'value', phase)}",
            run_id=run_id,
            phase=getattr(phase, "value", str(phase)),
        )

    def evaluation_completed(
        self, evaluation: int, rms: float, parameters: np.ndarray
    ) -> None:
        if not self.logger.is_enabled_for(logging.DEBUG):
            return
        self.logger.debug(
            f"Objective evaluation {evaluation}: rms={rms:.6e}",
            evaluation=evaluation,
            rms=rms,
            parameters=[float(p) for p in parameters],
        )

    def instrument_failed(self, error: InstrumentEvaluationError) -> None:
        self.logger.debug(
            f"Excluded instrument {error.index} from evaluation: {error}",
            instrument_index=error.index,
        )

    def run_completed(self, record: CalibrationRecord) -> None:
        self.logger.debug(
            f"The solver required {record.iterations} iterations "
            f"(accuracy {record.accuracy_achieved:.6e}, {record.termination})",
            **record.to_dict(),
        )
        if record.instrument_failures:
            self.logger.warning(
                f"Calibration {record.run_id}: {len(record.instrument_failures)} "
                f"instruments were excluded from at least one evaluation",
                run_id=record.run_id,
                instrument_failures=dict(record.instrument_failures),
            )

    def run_failed(self, run_id: str, error: CalculationFailure) -> None:
        self.logger.error(
            f"Calibration {run_id} failed: {error}",
            run_id=run_id,
            iterations=error.iterations,
        )


class RecordingDiagnostics(DiagnosticsSink):
    """In-memory sink keeping every event, for inspection after a run."""

    def __init__(self):
        self._lock = threading.Lock()
        self.phases: List[Tuple[str, Any]] = []
        self.evaluations: List[Tuple[int, float, np.ndarray]] = []
        self.failures: List[InstrumentEvaluationError] = []
        self.records: List[CalibrationRecord] = []
        self.errors: List[CalculationFailure] = []

    def phase_changed(self, run_id: str, phase: Any) -> None:
        with self._lock:
            self.phases.append((run_id, phase))

    def evaluation_completed(
        self, evaluation: int, rms: float, parameters: np.ndarray
    ) -> None:
        with self._lock:
            self.evaluations.append((evaluation, rms, np.array(parameters)))

    def instrument_failed(self, error: InstrumentEvaluationError) -> None:
        with self._lock:
            self.failures.append(error)

    def run_completed(self, record: CalibrationRecord) -> None:
        with self._lock:
            self.records.append(record)

    def run_failed(self, run_id: str, error: CalculationFailure) -> None:
        with self._lock:
            self.errors.append(error)


class CompositeDiagnostics(DiagnosticsSink):
    """Fan every event out to several sinks."""

    def __init__(self, sinks: Iterable[DiagnosticsSink]):
        self.sinks = list(sinks)

    def phase_changed(self, run_id: str, phase: Any) -> None:
        for sink in self.sinks:
            sink.phase_changed(run_id, phase)

    def evaluation_completed(
        self, evaluation: int, rms: float, parameters: np.ndarray
    ) -> None:
        for sink in self.sinks:
            sink.evaluation_completed(evaluation, rms, parameters)

    def instrument_failed(self, error: InstrumentEvaluationError) -> None:
        for sink in self.sinks:
            sink.instrument_failed(error)

    def run_completed(self, record: CalibrationRecord) -> None:
        for sink in self.sinks:
            sink.run_completed(record)

    def run_failed(self, run_id: str, error: CalculationFailure) -> None:
        for sink in self.sinks:
            sink.run_failed(run_id, error)
