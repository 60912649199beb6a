"""
Objective function handed to the optimizer.

Wraps a ``ResidualEvaluator`` as a plain ``vector -> vector`` callable and
keeps the bookkeeping of a run: number of evaluations and RMS diagnostics.
The RMS is informational only; the optimizer works on the residual vector.

An evaluation in which every instrument was excluded carries no information
about the fit: its residuals are reported as NaN so the optimizer rejects the
candidate instead of treating the all-zero vector as a perfect fit.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Optional

import numpy as np

from ..errors import CalibrationError, SolverEvaluationError
from ..models.base import ParameterVector
from ..monitoring.diagnostics import DiagnosticsSink
from .residuals import ResidualEvaluator

logger = logging.getLogger(__name__)


def root_mean_square(residuals: np.ndarray) -> float:
    """sqrt(sum(r_i^2) / n); 0.0 for an empty vector."""
    if residuals.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(residuals))))


class ObjectiveFunction:
    """
    Residual objective with evaluation bookkeeping.

    May be called concurrently (finite-difference Jacobian columns); the
    counters are updated under a lock.
    """

    def __init__(
        self,
        evaluator: ResidualEvaluator,
        diagnostics: Optional[DiagnosticsSink] = None,
    ):
        self.evaluator = evaluator
        self.diagnostics = diagnostics or DiagnosticsSink()

        self._lock = threading.Lock()
        self._evaluation_count = 0
        self._last_rms = math.nan
        self._best_rms = math.inf

    @property
    def number_of_parameters(self) -> int:
        return self.evaluator.base_model.get_parameters().shape[0]

    @property
    def number_of_residuals(self) -> int:
        return self.evaluator.number_of_instruments

    @property
    def evaluation_count(self) -> int:
        with self._lock:
            return self._evaluation_count

    @property
    def last_rms(self) -> float:
        with self._lock:
            return self._last_rms

    @property
    def best_rms(self) -> float:
        with self._lock:
            return self._best_rms

    def evaluate(self, parameters: ParameterVector) -> np.ndarray:
        """
        Residual vector for ``parameters``.

        Raises:
            DimensionMismatch: If the vector length is wrong
            SolverEvaluationError: If the candidate could not be evaluated
        """
        try:
            evaluation = self.evaluator.evaluate_detailed(parameters)
        except CalibrationError:
            raise
        except Exception as e:
            raise SolverEvaluationError(
                f"Objective evaluation failed: {type(e).__name__}: {e}"
            ) from e

        residuals = evaluation.residuals
        if residuals.size and len(evaluation.failures) == residuals.size:
            logger.warning(
                f"Every instrument failed at parameters {np.asarray(parameters)}; "
                f"residuals set to NaN"
            )
            residuals = np.full(residuals.size, np.nan)

        rms = root_mean_square(residuals)
        with self._lock:
            self._evaluation_count += 1
            count = self._evaluation_count
            self._last_rms = rms
            if rms < self._best_rms:
                self._best_rms = rms

        self.diagnostics.evaluation_completed(count, rms, np.asarray(parameters))
        return residuals

    __call__ = evaluate
