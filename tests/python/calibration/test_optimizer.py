"""
Tests for the least-squares optimizers.
"""

import threading

import numpy as np
import pytest

from quant_calibration.calibration import (
    LevenbergMarquardtFactory,
    LevenbergMarquardtOptimizer,
    ScipyLeastSquaresFactory,
    ScipyLeastSquaresOptimizer,
    SynchronousExecutor,
    TerminationReason,
    finite_difference_jacobian,
)
from quant_calibration.calibration.optimizer import expand_bound
from quant_calibration.errors import (
    CalibrationCancelled,
    SolverEvaluationError,
    SolverException,
)


class RecordingObjective:
    """Objective recording every vector it is evaluated at."""

    def __init__(self, function):
        self.function = function
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, parameters):
        with self._lock:
            self.calls.append(np.array(parameters))
        return self.function(np.asarray(parameters))


def rosenbrock_residuals(x):
    return np.array([10.0 * (x[1] - x[0] ** 2), 1.0 - x[0]])


class TestHelpers:
    """Tests for bound expansion and the finite-difference Jacobian."""

    def test_expand_scalar_bound(self):
        np.testing.assert_array_equal(expand_bound(0.5, 3, "lower"), [0.5, 0.5, 0.5])

    def test_expand_vector_bound(self):
        np.testing.assert_array_equal(expand_bound([1, 2], 2, "lower"), [1.0, 2.0])

    def test_expand_bound_length_mismatch(self):
        with pytest.raises(ValueError, match="lower"):
            expand_bound([1, 2], 3, "lower")

    def test_jacobian_of_linear_function(self):
        matrix = np.array([[1.0, 2.0], [3.0, -1.0], [0.5, 0.0]])
        objective = lambda x: matrix @ x
        x = np.array([0.3, 0.4])
        jacobian = finite_difference_jacobian(
            objective, x, objective(x),
            np.zeros(2), np.full(2, np.inf), np.full(2, 1e-4),
            SynchronousExecutor(),
        )
        np.testing.assert_allclose(jacobian, matrix, atol=1e-8)

    def test_jacobian_uses_backward_step_at_upper_bound(self):
        objective = RecordingObjective(lambda x: np.array([x[0] ** 2]))
        x = np.array([1.0])
        jacobian = finite_difference_jacobian(
            objective, x, objective(x),
            np.array([0.0]), np.array([1.0]), np.array([1e-3]),
            SynchronousExecutor(),
        )
        assert objective.calls[-1][0] == pytest.approx(0.999)
        assert jacobian[0, 0] == pytest.approx(1.999, rel=1e-9)

    def test_jacobian_zero_for_degenerate_bounds(self):
        objective = lambda x: np.array([x[0] + x[1]])
        x = np.array([1.0, 2.0])
        jacobian = finite_difference_jacobian(
            objective, x, objective(x),
            np.array([1.0, 0.0]), np.array([1.0, 5.0]), np.full(2, 1e-4),
            SynchronousExecutor(),
        )
        assert jacobian[0, 0] == 0.0
        assert jacobian[0, 1] == pytest.approx(1.0)


class TestLevenbergMarquardt:
    """Tests for LevenbergMarquardtOptimizer."""

    def test_rosenbrock(self):
        optimizer = LevenbergMarquardtOptimizer(
            rosenbrock_residuals, [-1.2, 1.0],
            lower_bound=-5.0, upper_bound=5.0,
            max_iterations=500, accuracy=1e-10, parameter_step=1e-7,
        )
        state = optimizer.run()

        assert state.termination == TerminationReason.CONVERGED
        np.testing.assert_allclose(optimizer.best_fit_parameters, [1.0, 1.0], atol=1e-6)
        assert optimizer.accuracy_achieved < 1e-10

    def test_error_history_non_increasing(self):
        optimizer = LevenbergMarquardtOptimizer(
            rosenbrock_residuals, [-1.2, 1.0], lower_bound=-5.0, upper_bound=5.0,
            max_iterations=50, accuracy=0.0,
        )
        state = optimizer.run()

        history = np.array(state.error_history)
        assert len(history) == state.iteration_count == 50
        assert np.all(np.diff(history) <= 0)
        assert state.termination == TerminationReason.ITERATION_LIMIT_REACHED

    def test_every_evaluated_vector_within_bounds(self):
        objective = RecordingObjective(lambda x: np.array([x[0] - 3.0, x[1] + 2.0]))
        optimizer = LevenbergMarquardtOptimizer(
            objective, [10.0, 10.0],
            lower_bound=[0.0, -1.0], upper_bound=[2.0, 4.0],
            max_iterations=30,
        )
        optimizer.run()

        calls = np.array(objective.calls)
        assert np.all(calls[:, 0] >= 0.0) and np.all(calls[:, 0] <= 2.0)
        assert np.all(calls[:, 1] >= -1.0) and np.all(calls[:, 1] <= 4.0)
        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.0, -1.0])

    def test_target_values(self):
        optimizer = LevenbergMarquardtOptimizer(
            lambda x: np.array([x[0], 2.0 * x[1]]), [1.0, 1.0],
            target_values=[0.5, 0.4], max_iterations=100, accuracy=1e-12,
        )
        optimizer.run()
        np.testing.assert_allclose(optimizer.best_fit_parameters, [0.5, 0.2], atol=1e-8)

    def test_zero_iterations(self):
        optimizer = LevenbergMarquardtOptimizer(
            lambda x: np.array([x[0] - 1.0]), [0.0], max_iterations=0
        )
        state = optimizer.run()
        assert state.iteration_count == 0
        assert state.termination == TerminationReason.ITERATION_LIMIT_REACHED
        assert optimizer.accuracy_achieved == pytest.approx(1.0)

    def test_non_finite_start_diverges(self):
        optimizer = LevenbergMarquardtOptimizer(lambda x: np.array([np.nan]), [1.0])
        with pytest.raises(SolverException, match="not finite"):
            optimizer.run()

    def test_evaluation_error_becomes_solver_exception(self):
        def objective(x):
            raise SolverEvaluationError("context failed")

        optimizer = LevenbergMarquardtOptimizer(objective, [1.0])
        with pytest.raises(SolverException) as exc_info:
            optimizer.run()
        assert isinstance(exc_info.value.__cause__, SolverEvaluationError)

    def test_cancel_event(self):
        cancel_event = threading.Event()
        calls = []

        def objective(x):
            calls.append(x)
            if len(calls) > 3:
                cancel_event.set()
            return np.array([x[0] - 0.1, x[0] - 0.2])

        optimizer = LevenbergMarquardtOptimizer(
            objective, [1.0], max_iterations=1000, accuracy=0.0, cancel_event=cancel_event
        )
        with pytest.raises(CalibrationCancelled):
            optimizer.run()
        assert 0 < optimizer.iterations < 1000

    def test_invalid_bounds(self):
        with pytest.raises(ValueError, match="upper_bound"):
            LevenbergMarquardtOptimizer(lambda x: x, [1.0], lower_bound=2.0, upper_bound=1.0)

    def test_invalid_step(self):
        with pytest.raises(ValueError, match="parameter_step"):
            LevenbergMarquardtOptimizer(lambda x: x, [1.0], parameter_step=0.0)

    def test_factory(self):
        factory = LevenbergMarquardtFactory(max_iterations=7, accuracy=1e-3, number_of_threads=1)
        optimizer = factory.get_optimizer(lambda x: x - 1.0, [0.0, 0.0], parameter_step=1e-6)

        assert isinstance(optimizer, LevenbergMarquardtOptimizer)
        assert optimizer.max_iterations == 7
        assert optimizer.accuracy == 1e-3
        np.testing.assert_array_equal(optimizer.parameter_step, [1e-6, 1e-6])
        optimizer.run()
        assert optimizer.state.termination == TerminationReason.CONVERGED


class TestScipyLeastSquares:
    """Tests for ScipyLeastSquaresOptimizer."""

    def test_rosenbrock(self):
        optimizer = ScipyLeastSquaresOptimizer(
            rosenbrock_residuals, [-1.2, 1.0],
            lower_bound=-5.0, upper_bound=5.0,
            max_iterations=500, accuracy=1e-8, parameter_step=1e-7,
        )
        state = optimizer.run()

        np.testing.assert_allclose(optimizer.best_fit_parameters, [1.0, 1.0], atol=1e-5)
        assert state.termination in (
            TerminationReason.CONVERGED, TerminationReason.TOLERANCE_REACHED
        )
        assert state.iteration_count > 0

    def test_bounds_and_history(self):
        objective = RecordingObjective(lambda x: np.array([x[0] - 3.0, x[1] + 2.0]))
        optimizer = ScipyLeastSquaresOptimizer(
            objective, [1.0, 1.0],
            lower_bound=[0.0, -1.0], upper_bound=[2.0, 4.0],
            max_iterations=50,
        )
        state = optimizer.run()

        calls = np.array(objective.calls)
        assert np.all(calls >= [0.0, -1.0]) and np.all(calls <= [2.0, 4.0])
        assert np.all(np.diff(state.error_history) <= 0)
        np.testing.assert_allclose(optimizer.best_fit_parameters, [2.0, -1.0], atol=1e-4)

    def test_already_converged(self):
        optimizer = ScipyLeastSquaresOptimizer(lambda x: x - 1.0, [1.0], accuracy=1e-6)
        state = optimizer.run()
        assert state.termination == TerminationReason.CONVERGED
        assert state.iteration_count == 0

    def test_equal_bounds_rejected(self):
        with pytest.raises(ValueError, match="lower_bound < upper_bound"):
            ScipyLeastSquaresOptimizer(lambda x: x, [1.0], lower_bound=1.0, upper_bound=1.0)

    def test_factory(self):
        factory = ScipyLeastSquaresFactory(max_iterations=20, accuracy=1e-4)
        optimizer = factory.get_optimizer(lambda x: x - 0.5, [0.0])
        assert isinstance(optimizer, ScipyLeastSquaresOptimizer)
        optimizer.run()
        assert optimizer.best_fit_parameters[0] == pytest.approx(0.5, abs=1e-4)
