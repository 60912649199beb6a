"""
Optimizer backed by ``scipy.optimize.least_squares``.

Uses the trust-region reflective method with hard bounds and the package's
finite-difference Jacobian, so parameter steps and bound handling match the
Levenberg-Marquardt optimizer. ``least_squares`` reports its final point
only; the best point seen by the objective is tracked here so the
best-so-far error stays non-increasing.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import least_squares

from ..errors import SolverException
from ..models.base import frozen_vector
from .optimizer import (
    Bound,
    Objective,
    Optimizer,
    OptimizerFactory,
    OptimizerState,
    TerminationReason,
    finite_difference_jacobian,
)

logger = logging.getLogger(__name__)


class ScipyLeastSquaresOptimizer(Optimizer):
    """
    Bounded least squares via scipy's ``trf`` method.

    ``max_iterations`` limits the number of objective evaluations made by
    scipy (``max_nfev``); ``iterations`` reports the number of Jacobian
    evaluations, one per trust-region iteration.

    Args:
        ftol: Relative cost tolerance passed to scipy
        xtol: Relative step tolerance passed to scipy
        gtol: Gradient tolerance passed to scipy
        **kwargs: See ``Optimizer``
    """

    def __init__(
        self,
        objective: Objective,
        initial_parameters: Sequence[float],
        ftol: float = 1e-10,
        xtol: float = 1e-10,
        gtol: float = 1e-10,
        **kwargs,
    ):
        super().__init__(objective, initial_parameters, **kwargs)
        if np.any(self.lower_bound >= self.upper_bound):
            raise ValueError("least_squares requires lower_bound < upper_bound")
        self.ftol = ftol
        self.xtol = xtol
        self.gtol = gtol

        self._lock = threading.Lock()
        self._cache_key: Optional[bytes] = None
        self._cache_values: Optional[np.ndarray] = None

    def _track(self, parameters: np.ndarray, values: np.ndarray) -> None:
        error = self._error(values)
        with self._lock:
            self._cache_key = parameters.tobytes()
            self._cache_values = values
            if np.all(np.isfinite(values)) and error < self._state.last_accuracy:
                self._state.best_parameters = frozen_vector(parameters)
                self._state.last_accuracy = error
            self._state.error_history.append(self._state.last_accuracy)

    def run(self) -> OptimizerState:
        state = self._state
        x0 = self.initial_parameters.copy()

        values = self._evaluate(x0)
        if not np.all(np.isfinite(values)):
            raise SolverException("Objective is not finite at the initial parameters")
        self._track(x0, values)
        state.error_history.clear()

        if state.last_accuracy < self.accuracy or self.max_iterations == 0:
            state.termination = (
                TerminationReason.CONVERGED if state.last_accuracy < self.accuracy
                else TerminationReason.ITERATION_LIMIT_REACHED
            )
            return state

        with self._jacobian_executor() as executor:

            def fun(x: np.ndarray) -> np.ndarray:
                self._check_cancelled()
                x = np.clip(x, self.lower_bound, self.upper_bound)
                values = self._evaluate(x)
                self._track(x, values)
                return values - self.target_values

            def jac(x: np.ndarray) -> np.ndarray:
                x = np.clip(x, self.lower_bound, self.upper_bound)
                with self._lock:
                    cached = (
                        self._cache_values if self._cache_key == x.tobytes() else None
                    )
                if cached is None:
                    cached = self._evaluate(x)
                return finite_difference_jacobian(
                    self._evaluate, x, cached, self.lower_bound, self.upper_bound,
                    self.parameter_step, executor,
                )

            result = least_squares(
                fun,
                x0=x0,
                jac=jac,
                bounds=(self.lower_bound, self.upper_bound),
                method="trf",
                ftol=self.ftol,
                xtol=self.xtol,
                gtol=self.gtol,
                max_nfev=self.max_iterations,
                verbose=0,
            )

        state.iteration_count = int(result.njev or 0)
        if state.last_accuracy < self.accuracy:
            state.termination = TerminationReason.CONVERGED
        elif result.status == 0:
            state.termination = TerminationReason.ITERATION_LIMIT_REACHED
        else:
            state.termination = TerminationReason.TOLERANCE_REACHED

        logger.debug(
            f"least_squares finished: status={result.status} ({result.message}), "
            f"nfev={result.nfev}, error={state.last_accuracy:.6e}"
        )
        return state


class ScipyLeastSquaresFactory(OptimizerFactory):
    """Factory for ``ScipyLeastSquaresOptimizer``; same arguments as ``LevenbergMarquardtFactory``."""

    def __init__(
        self,
        max_iterations: int = 400,
        accuracy: float = 1e-7,
        number_of_threads: int = 2,
        cancel_event: Optional[threading.Event] = None,
        ftol: float = 1e-10,
        xtol: float = 1e-10,
        gtol: float = 1e-10,
    ):
        self.max_iterations = max_iterations
        self.accuracy = accuracy
        self.number_of_threads = number_of_threads
        self.cancel_event = cancel_event
        self.ftol = ftol
        self.xtol = xtol
        self.gtol = gtol

    def get_optimizer(
        self,
        objective: Objective,
        initial_parameters: Sequence[float],
        lower_bound: Bound = 0.0,
        upper_bound: Bound = math.inf,
        parameter_step: Bound = 1e-4,
        target_values: Optional[Sequence[float]] = None,
    ) -> ScipyLeastSquaresOptimizer:
        return ScipyLeastSquaresOptimizer(
            objective,
            initial_parameters,
            ftol=self.ftol,
            xtol=self.xtol,
            gtol=self.gtol,
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            parameter_step=parameter_step,
            target_values=target_values,
            max_iterations=self.max_iterations,
            accuracy=self.accuracy,
            number_of_threads=self.number_of_threads,
            cancel_event=self.cancel_event,
        )
