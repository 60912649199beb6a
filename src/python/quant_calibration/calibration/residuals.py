"""
Residual evaluation.

For a candidate parameter vector the evaluator clones the base model,
builds one fresh pricing context and values every instrument against it:

    residual[i] = weight[i] * (value[i] - target[i])

An instrument that raises, or returns a non-finite value, contributes a
zero residual for that evaluation. The failure is counted per instrument
and reported to the diagnostics sink; it never reaches the optimizer.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import CalibrationError, InstrumentEvaluationError, SolverEvaluationError
from ..models.base import ParametricModel, ParameterVector
from ..monitoring.diagnostics import DiagnosticsSink
from .executors import make_executor
from .instruments import CalibrationInstrument

logger = logging.getLogger(__name__)

ContextBuilder = Callable[[ParametricModel], Any]


@dataclass
class ResidualEvaluation:
    """Residuals of one evaluation plus the instruments that were excluded."""

    residuals: np.ndarray
    failures: List[InstrumentEvaluationError] = field(default_factory=list)

    @property
    def failed_indices(self) -> List[int]:
        return [failure.index for failure in self.failures]


class ResidualEvaluator:
    """
    Maps candidate parameter vectors to weighted residual vectors.

    Args:
        base_model: Model whose clones are evaluated; never mutated
        instruments: Calibration instruments, in residual order
        build_context: ``model -> pricing context``
        evaluation_time: Time at which products are valued
        concurrency_degree: Worker threads for instrument valuation;
            0 evaluates on the calling thread
        diagnostics: Sink receiving instrument failures

    Example:
        >>> with ResidualEvaluator(surface, instruments, builder) as evaluator:
        ...     residuals = evaluator.evaluate([0.2, -0.3, 0.4])
    """

    def __init__(
        self,
        base_model: ParametricModel,
        instruments: Sequence[CalibrationInstrument],
        build_context: ContextBuilder,
        evaluation_time: float = 0.0,
        concurrency_degree: int = 0,
        diagnostics: Optional[DiagnosticsSink] = None,
    ):
        if concurrency_degree < 0:
            raise ValueError("concurrency_degree must be non-negative")

        self.base_model = base_model
        self.instruments: Tuple[CalibrationInstrument, ...] = tuple(instruments)
        self.build_context = build_context
        self.evaluation_time = evaluation_time
        self.concurrency_degree = concurrency_degree
        self.diagnostics = diagnostics or DiagnosticsSink()

        self._executor = make_executor(
            concurrency_degree, thread_name_prefix="calibration-instrument"
        )
        self._lock = threading.Lock()
        self._failure_counts: Counter = Counter()
        self._evaluation_count = 0
        self._closed = False

    @property
    def number_of_instruments(self) -> int:
        return len(self.instruments)

    @property
    def evaluation_count(self) -> int:
        with self._lock:
            return self._evaluation_count

    @property
    def failure_counts(self) -> Dict[int, int]:
        """Number of evaluations each failing instrument was excluded from."""
        with self._lock:
            return dict(self._failure_counts)

    def evaluate(self, parameters: ParameterVector) -> np.ndarray:
        """Return the residual vector for ``parameters``."""
        return self.evaluate_detailed(parameters).residuals

    def evaluate_detailed(self, parameters: ParameterVector) -> ResidualEvaluation:
        """
        Evaluate all instruments for one candidate vector.

        Blocks until every instrument has been valued or has failed.

        Raises:
            DimensionMismatch: If the vector length differs from the model's
            SolverEvaluationError: If the pricing context cannot be built
        """
        if self._closed:
            raise RuntimeError("ResidualEvaluator is closed")

        candidate = self.base_model.with_parameters(parameters)

        try:
            context = self.build_context(candidate)
        except CalibrationError:
            raise
        except Exception as e:
            raise SolverEvaluationError(
                f"Failed to build pricing context: {type(e).__name__}: {e}"
            ) from e

        futures = [
            self._executor.submit(self._evaluate_instrument, index, instrument, context)
            for index, instrument in enumerate(self.instruments)
        ]

        residuals = np.zeros(len(futures))
        failures: List[InstrumentEvaluationError] = []
        for index, future in enumerate(futures):
            residual, failure = future.result()
            residuals[index] = residual
            if failure is not None:
                failures.append(failure)

        with self._lock:
            self._evaluation_count += 1
            for failure in failures:
                self._failure_counts[failure.index] += 1

        for failure in failures:
            self.diagnostics.instrument_failed(failure)

        return ResidualEvaluation(residuals=residuals, failures=failures)

    def _evaluate_instrument(
        self, index: int, instrument: CalibrationInstrument, context: Any
    ) -> Tuple[float, Optional[InstrumentEvaluationError]]:
        try:
            value = float(instrument.product.value(self.evaluation_time, context))
        except Exception as e:
            logger.debug(f"Instrument {index} raised {type(e).__name__}: {e}")
            return 0.0, InstrumentEvaluationError(index, instrument.product, cause=e)

        if not math.isfinite(value):
            logger.debug(f"Instrument {index} returned non-finite value {value}")
            return 0.0, InstrumentEvaluationError(index, instrument.product, value=value)

        return instrument.weight * (value - instrument.target_value), None

    def close(self) -> None:
        """Shut down the worker pool. Idempotent."""
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "ResidualEvaluator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ResidualEvaluator(instruments={len(self.instruments)}, "
            f"concurrency_degree={self.concurrency_degree})"
        )
