"""
Bounded nonlinear least-squares optimizers.

The optimizer minimizes ``|values(x) - target|`` where ``values`` is the
residual vector returned by the objective function. It treats the objective
as a black box: derivatives come from finite differences with absolute,
per-parameter steps.

Guarantees shared by every optimizer in this package:
- every vector handed to the objective (Jacobian columns included) lies
  within ``[lower_bound, upper_bound]``
- the best-so-far error is non-increasing (``OptimizerState.error_history``)
- the run stops once the error drops below ``accuracy`` or after
  ``max_iterations`` iterations

Optimizers are built through an ``OptimizerFactory`` so the orchestrator can
be pointed at a different algorithm without changing anything else.
"""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
from scipy import linalg

from ..errors import CalibrationCancelled, SolverEvaluationError, SolverException
from ..models.base import frozen_vector
from .executors import make_executor
from .objective import root_mean_square

logger = logging.getLogger(__name__)

Bound = Union[float, Sequence[float], np.ndarray]
Objective = Callable[[np.ndarray], np.ndarray]

INITIAL_LAMBDA = 1e-3
MIN_LAMBDA = 1e-12
MAX_LAMBDA = 1e16


class TerminationReason(Enum):
    """Why an optimizer stopped."""

    CONVERGED = "converged"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"
    TOLERANCE_REACHED = "tolerance_reached"  # solver's own step/cost tolerances


@dataclass
class OptimizerState:
    """
    State of an optimizer run.

    Attributes:
        best_parameters: Best vector found so far
        iteration_count: Completed iterations
        last_accuracy: RMS error at ``best_parameters``
        termination: Set once the run has finished
        error_history: Best-so-far RMS error after each iteration
    """

    best_parameters: np.ndarray
    iteration_count: int = 0
    last_accuracy: float = math.inf
    termination: Optional[TerminationReason] = None
    error_history: List[float] = field(default_factory=list)

    def to_dict(self):
        return {
            "best_parameters": [float(p) for p in self.best_parameters],
            "iteration_count": self.iteration_count,
            "last_accuracy": self.last_accuracy,
            "termination": self.termination.value if self.termination else None,
        }


def expand_bound(value: Bound, size: int, name: str) -> np.ndarray:
    """Broadcast a scalar or per-parameter bound to a float64 vector of ``size``."""
    array = np.asarray(value, dtype=np.float64)
    if array.ndim == 0:
        return np.full(size, float(array))
    array = array.reshape(-1)
    if array.size != size:
        raise ValueError(f"{name} has {array.size} entries, expected {size}")
    return array.copy()


def finite_difference_jacobian(
    objective: Objective,
    parameters: np.ndarray,
    values: np.ndarray,
    lower_bound: np.ndarray,
    upper_bound: np.ndarray,
    steps: np.ndarray,
    executor: Executor,
) -> np.ndarray:
    """
    One-sided finite-difference Jacobian of ``objective`` at ``parameters``.

    Uses a forward step unless it would leave the upper bound, in which case
    the backward step is used. Shifted points are clipped into the bounds; a
    coordinate that cannot move (degenerate bounds) yields a zero column.
    Columns are evaluated concurrently on ``executor``.

    Args:
        objective: Vector-valued function
        parameters: Point of differentiation (within bounds)
        values: ``objective(parameters)``
        lower_bound: Lower bounds
        upper_bound: Upper bounds
        steps: Absolute step per parameter
        executor: Executor the columns are submitted to

    Returns:
        Matrix of shape ``(len(values), len(parameters))``
    """

    def column(j: int) -> np.ndarray:
        shifted = parameters.copy()
        if parameters[j] + steps[j] <= upper_bound[j]:
            shifted[j] = parameters[j] + steps[j]
        else:
            shifted[j] = parameters[j] - steps[j]
        shifted = np.clip(shifted, lower_bound, upper_bound)

        delta = shifted[j] - parameters[j]
        if delta == 0.0:
            return np.zeros(values.shape[0])
        return (np.asarray(objective(shifted), dtype=np.float64) - values) / delta

    futures = [executor.submit(column, j) for j in range(parameters.shape[0])]
    jacobian = np.column_stack([future.result() for future in futures])
    jacobian[~np.isfinite(jacobian)] = 0.0
    return jacobian


class Optimizer(ABC):
    """
    Base class of the bounded least-squares optimizers.

    Args:
        objective: ``parameters -> values``
        initial_parameters: Start vector (clipped into the bounds)
        lower_bound: Scalar or per-parameter lower bound
        upper_bound: Scalar or per-parameter upper bound
        parameter_step: Scalar or per-parameter finite-difference step
        target_values: Values the objective should reach (zeros by default)
        max_iterations: Iteration limit
        accuracy: RMS error below which the run has converged
        number_of_threads: Workers evaluating Jacobian columns
        cancel_event: Checked once per iteration
    """

    def __init__(
        self,
        objective: Objective,
        initial_parameters: Sequence[float],
        lower_bound: Bound = 0.0,
        upper_bound: Bound = math.inf,
        parameter_step: Bound = 1e-4,
        target_values: Optional[Sequence[float]] = None,
        max_iterations: int = 400,
        accuracy: float = 1e-7,
        number_of_threads: int = 2,
        cancel_event: Optional[threading.Event] = None,
    ):
        x0 = np.asarray(initial_parameters, dtype=np.float64).reshape(-1)
        n = x0.size
        if n == 0:
            raise ValueError("Cannot optimize an empty parameter vector")
        if max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")

        self.objective = objective
        self.lower_bound = expand_bound(lower_bound, n, "lower_bound")
        self.upper_bound = expand_bound(upper_bound, n, "upper_bound")
        self.parameter_step = expand_bound(parameter_step, n, "parameter_step")
        self.target_values = (
            None if target_values is None
            else np.asarray(target_values, dtype=np.float64).reshape(-1)
        )
        self.max_iterations = max_iterations
        self.accuracy = accuracy
        self.number_of_threads = number_of_threads
        self.cancel_event = cancel_event

        if np.any(self.lower_bound > self.upper_bound):
            raise ValueError("lower_bound must not exceed upper_bound")
        if np.any(~(self.parameter_step > 0)):
            raise ValueError("parameter_step must be positive")

        self.initial_parameters = np.clip(x0, self.lower_bound, self.upper_bound)
        self._state = OptimizerState(best_parameters=frozen_vector(self.initial_parameters))

    @abstractmethod
    def run(self) -> OptimizerState:
        """Run to termination and return the final state."""

    @property
    def state(self) -> OptimizerState:
        return self._state

    @property
    def best_fit_parameters(self) -> np.ndarray:
        return self._state.best_parameters

    @property
    def iterations(self) -> int:
        return self._state.iteration_count

    @property
    def accuracy_achieved(self) -> float:
        return self._state.last_accuracy

    def _evaluate(self, parameters: np.ndarray) -> np.ndarray:
        try:
            values = np.asarray(self.objective(parameters), dtype=np.float64).reshape(-1)
        except SolverEvaluationError as e:
            raise SolverException(
                f"Objective evaluation failed after {self._state.iteration_count} iterations: {e}"
            ) from e

        if self.target_values is None:
            self.target_values = np.zeros_like(values)
        elif self.target_values.shape != values.shape:
            raise ValueError(
                f"target_values has {self.target_values.size} entries, "
                f"objective returned {values.size}"
            )
        return values

    def _error(self, values: np.ndarray) -> float:
        return root_mean_square(values - self.target_values)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CalibrationCancelled(
                f"Calibration cancelled after {self._state.iteration_count} iterations"
            )

    def _jacobian_executor(self) -> Executor:
        workers = self.number_of_threads if self.number_of_threads > 1 else 0
        return make_executor(workers, thread_name_prefix="calibration-jacobian")


class LevenbergMarquardtOptimizer(Optimizer):
    """
    Levenberg-Marquardt with hard bounds.

    Each iteration solves the damped normal equations

        (JᵀJ + λ diag(JᵀJ)) δ = Jᵀ (target - values)

    at the best point and tries ``clip(x + δ, lower, upper)``. An improving
    candidate is accepted and λ decreased; otherwise λ is increased and the
    Jacobian reused.

    Example:
        >>> optimizer = LevenbergMarquardtOptimizer(
        ...     objective, initial_parameters=[0.2, 0.1], max_iterations=100
        ... )
        >>> state = optimizer.run()
        >>> state.termination
        <TerminationReason.CONVERGED: 'converged'>
    """

    def run(self) -> OptimizerState:
        state = self._state
        lower, upper = self.lower_bound, self.upper_bound
        x = self.initial_parameters.copy()

        with self._jacobian_executor() as executor:
            values = self._evaluate(x)
            if not np.all(np.isfinite(values)):
                raise SolverException("Objective is not finite at the initial parameters")

            best_error = self._error(values)
            state.best_parameters = frozen_vector(x)
            state.last_accuracy = best_error

            lam = INITIAL_LAMBDA
            jacobian: Optional[np.ndarray] = None

            while True:
                if best_error < self.accuracy:
                    state.termination = TerminationReason.CONVERGED
                    break
                if state.iteration_count >= self.max_iterations:
                    state.termination = TerminationReason.ITERATION_LIMIT_REACHED
                    break
                self._check_cancelled()
                state.iteration_count += 1

                if jacobian is None:
                    jacobian = finite_difference_jacobian(
                        self._evaluate, x, values, lower, upper,
                        self.parameter_step, executor,
                    )

                gradient = jacobian.T @ (self.target_values - values)
                normal = jacobian.T @ jacobian
                scale = np.diag(normal).copy()
                # parameters without influence still need damping to keep the system regular
                scale[scale <= 0.0] = 1.0
                damped = normal + lam * np.diag(scale)

                try:
                    delta = linalg.solve(damped, gradient, assume_a="sym")
                except linalg.LinAlgError:
                    delta = None

                accepted = False
                if delta is not None and np.all(np.isfinite(delta)):
                    candidate = np.clip(x + delta, lower, upper)
                    if not np.array_equal(candidate, x):
                        candidate_values = self._evaluate(candidate)
                        candidate_error = self._error(candidate_values)
                        if np.all(np.isfinite(candidate_values)) and candidate_error < best_error:
                            x, values, best_error = candidate, candidate_values, candidate_error
                            jacobian = None
                            accepted = True

                if accepted:
                    lam = max(lam / 3.0, MIN_LAMBDA)
                else:
                    lam = min(lam * 2.0, MAX_LAMBDA)

                state.best_parameters = frozen_vector(x)
                state.last_accuracy = best_error
                state.error_history.append(best_error)

                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug(
                        f"LM iteration {state.iteration_count}: error={best_error:.6e}, "
                        f"lambda={lam:.3e}, accepted={accepted}"
                    )

        logger.debug(
            f"Levenberg-Marquardt finished: {state.termination.value}, "
            f"iterations={state.iteration_count}, error={state.last_accuracy:.6e}"
        )
        return state


class OptimizerFactory(ABC):
    """Builds optimizers for the orchestrator."""

    @abstractmethod
    def get_optimizer(
        self,
        objective: Objective,
        initial_parameters: Sequence[float],
        lower_bound: Bound = 0.0,
        upper_bound: Bound = math.inf,
        parameter_step: Bound = 1e-4,
        target_values: Optional[Sequence[float]] = None,
    ) -> Optimizer:
        """Create an optimizer for one run."""


class LevenbergMarquardtFactory(OptimizerFactory):
    """
    Factory for ``LevenbergMarquardtOptimizer``.

    Args:
        max_iterations: Iteration limit
        accuracy: Target RMS error
        number_of_threads: Workers evaluating Jacobian columns
        cancel_event: Optional cancellation flag shared with the caller
    """

    def __init__(
        self,
        max_iterations: int = 400,
        accuracy: float = 1e-7,
        number_of_threads: int = 2,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.max_iterations = max_iterations
        self.accuracy = accuracy
        self.number_of_threads = number_of_threads
        self.cancel_event = cancel_event

    def get_optimizer(
        self,
        objective: Objective,
        initial_parameters: Sequence[float],
        lower_bound: Bound = 0.0,
        upper_bound: Bound = math.inf,
        parameter_step: Bound = 1e-4,
        target_values: Optional[Sequence[float]] = None,
    ) -> LevenbergMarquardtOptimizer:
        return LevenbergMarquardtOptimizer(
            objective,
            initial_parameters,
            lower_bound=lower_bound,
            upper_bound=upper_bound,
            parameter_step=parameter_step,
            target_values=target_values,
            max_iterations=self.max_iterations,
            accuracy=self.accuracy,
            number_of_threads=self.number_of_threads,
            cancel_event=self.cancel_event,
        )

    def __repr__(self) -> str:
        return (
            f"LevenbergMarquardtFactory(max_iterations={self.max_iterations}, "
            f"accuracy={self.accuracy}, number_of_threads={self.number_of_threads})"
        )
