"""
Calibration Orchestrator.

Runs one calibration of a parametric model against a set of instruments:

    settings → driver → ResidualEvaluator → ObjectiveFunction → Optimizer
                                                                  ↓
                         calibrated clone ← with_parameters(best fit)

Each run moves through ``CONFIGURING → EVALUATING → {CONVERGED |
ITERATION_LIMIT_REACHED | FAILED} → FINALIZING → DONE``. ``FAILED`` is
terminal: the worker pools are released and a ``CalculationFailure`` is
raised.

The engine is written against the ``{get_parameters, with_parameters}``
protocol only. Model-specific knowledge lives in the context builder, a
plain function ``model -> pricing context`` supplied by the caller.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import ANALYTIC_DEFAULTS, MONTE_CARLO_DEFAULTS, CalibrationSettings
from ..errors import CalculationFailure, SolverException
from ..models.base import ParametricModel
from ..monitoring.diagnostics import (
    CalibrationRecord,
    DiagnosticsSink,
    LoggingDiagnostics,
)
from ..monitoring.logging import BoundLogger
from .instruments import CalibrationInstrument
from .objective import ObjectiveFunction
from .optimizer import (
    Bound,
    LevenbergMarquardtFactory,
    OptimizerFactory,
    TerminationReason,
)
from .residuals import ContextBuilder, ResidualEvaluator

logger = logging.getLogger(__name__)

OptimizerFactoryBuilder = Callable[..., OptimizerFactory]


class CalibrationPhase(Enum):
    """Phases of a calibration run."""

    CONFIGURING = "configuring"
    EVALUATING = "evaluating"
    CONVERGED = "converged"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"
    FAILED = "failed"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class CalibrationRunResult:
    """Result of a calibration run."""

    model: ParametricModel
    termination: TerminationReason
    iterations: int
    accuracy_achieved: float
    parameters: np.ndarray
    evaluations: int = 0
    instrument_failures: Dict[int, int] = field(default_factory=dict)
    phases: List[CalibrationPhase] = field(default_factory=list)
    elapsed: float = 0.0
    run_id: str = ""

    @property
    def converged(self) -> bool:
        return self.termination == TerminationReason.CONVERGED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "run_id": self.run_id,
            "termination": self.termination.value,
            "iterations": self.iterations,
            "accuracy_achieved": self.accuracy_achieved,
            "parameters": [float(p) for p in self.parameters],
            "evaluations": self.evaluations,
            "instrument_failures": dict(self.instrument_failures),
            "phases": [phase.value for phase in self.phases],
            "elapsed": self.elapsed,
        }


class CalibrationOrchestrator:
    """
    Calibrates parametric models against calibration instruments.

    Args:
        build_context: ``model -> pricing context``; with a stochastic driver
            it is called as ``build_context(model, driver=driver)``
        driver_factory: ``(number_of_paths=..., seed=...) -> driver``, called
            once per run
        driver: Pre-built driver shared by all runs (overrides the factory)
        optimizer_factory: Callable ``(max_iterations=..., accuracy=...,
            number_of_threads=..., cancel_event=...) -> OptimizerFactory``;
            Levenberg-Marquardt by default
        diagnostics: Sink for run events (structured DEBUG logging by default)

    Example:
        >>> orchestrator = CalibrationOrchestrator(
        ...     build_context=partial(ShortRateMonteCarloSimulation, initial_rate=0.02),
        ...     driver_factory=partial(BrownianMotion, grid),
        ... )
        >>> result = orchestrator.calibrate(model, instruments)
        >>> if result.converged:
        ...     print(result.parameters)
    """

    def __init__(
        self,
        build_context: ContextBuilder,
        *,
        driver_factory: Optional[Callable[..., Any]] = None,
        driver: Optional[Any] = None,
        optimizer_factory: Optional[OptimizerFactoryBuilder] = None,
        diagnostics: Optional[DiagnosticsSink] = None,
    ):
        self.build_context = build_context
        self.driver_factory = driver_factory
        self.driver = driver
        self.optimizer_factory = optimizer_factory or LevenbergMarquardtFactory
        self.diagnostics = diagnostics or LoggingDiagnostics()

    @property
    def is_monte_carlo(self) -> bool:
        return self.driver is not None or self.driver_factory is not None

    def resolve_settings(
        self, settings: Optional[CalibrationSettings] = None
    ) -> CalibrationSettings:
        """Merge ``settings`` over the defaults matching this orchestrator."""
        defaults = MONTE_CARLO_DEFAULTS if self.is_monte_carlo else ANALYTIC_DEFAULTS
        return (settings or CalibrationSettings()).merged_over(defaults)

    def resolve_bounds(
        self,
        model: ParametricModel,
        settings: Optional[CalibrationSettings],
        resolved: CalibrationSettings,
    ) -> Tuple[Bound, Bound]:
        """
        Parameter bounds for a run.

        Bounds given in ``settings`` win. A bound left unset comes from the
        model's ``default_bounds()`` when it provides one, so that candidates
        stay inside the model's domain; otherwise the resolved default is used.
        """
        lower = settings.lower_bound if settings is not None else None
        upper = settings.upper_bound if settings is not None else None
        if lower is not None and upper is not None:
            return lower, upper

        default_bounds = getattr(model, "default_bounds", None)
        if callable(default_bounds):
            model_lower, model_upper = default_bounds()
            logger.debug(f"Using bounds supplied by {type(model).__name__}")
            return (
                model_lower if lower is None else lower,
                model_upper if upper is None else upper,
            )
        return resolved.lower_bound, resolved.upper_bound

    def calibrate(
        self,
        model: ParametricModel,
        instruments: Sequence[CalibrationInstrument],
        settings: Optional[CalibrationSettings] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CalibrationRunResult:
        """
        Calibrate ``model`` to ``instruments``.

        Args:
            model: Base model; never mutated
            instruments: Calibration instruments
            settings: Overrides of the default settings
            cancel_event: Set from another thread to cancel the run

        Returns:
            CalibrationRunResult holding the calibrated clone

        Raises:
            ValueError: For empty instruments or a model without parameters,
                and for bounds or steps not matching the parameter count
            CalculationFailure: If the optimizer diverged, could not evaluate
                the objective, or was cancelled
            DimensionMismatch: If a candidate vector has the wrong length
        """
        instruments = list(instruments)
        if not instruments:
            raise ValueError("At least one calibration instrument is required")
        initial_parameters = np.asarray(model.get_parameters(), dtype=np.float64)
        if initial_parameters.size == 0:
            raise ValueError("Model has no free parameters to calibrate")

        run_id = uuid.uuid4().hex[:12]
        phases: List[CalibrationPhase] = []
        start = time.perf_counter()

        def enter(phase: CalibrationPhase) -> None:
            phases.append(phase)
            self.diagnostics.phase_changed(run_id, phase)

        with BoundLogger(run_id=run_id):
            enter(CalibrationPhase.CONFIGURING)
            evaluator: Optional[ResidualEvaluator] = None
            optimizer = None
            try:
                resolved = self.resolve_settings(settings)
                lower_bound, upper_bound = self.resolve_bounds(model, settings, resolved)
                build_context = self._context_builder(resolved)

                evaluator = ResidualEvaluator(
                    model,
                    instruments,
                    build_context,
                    evaluation_time=resolved.evaluation_time,
                    concurrency_degree=resolved.concurrency_degree,
                    diagnostics=self.diagnostics,
                )
                objective = ObjectiveFunction(evaluator, self.diagnostics)
                optimizer = self.optimizer_factory(
                    max_iterations=resolved.max_iterations,
                    accuracy=resolved.accuracy,
                    number_of_threads=resolved.optimizer_threads,
                    cancel_event=cancel_event,
                ).get_optimizer(
                    objective,
                    initial_parameters,
                    lower_bound=lower_bound,
                    upper_bound=upper_bound,
                    parameter_step=resolved.parameter_step,
                )

                logger.debug(
                    f"Calibration {run_id}: {initial_parameters.size} parameters, "
                    f"{len(instruments)} instruments, settings={resolved.to_dict()}"
                )

                enter(CalibrationPhase.EVALUATING)
                state = optimizer.run()
            except SolverException as e:
                enter(CalibrationPhase.FAILED)
                iterations = optimizer.iterations if optimizer is not None else 0
                failure = CalculationFailure("Calibration failed", cause=e, iterations=iterations)
                self.diagnostics.run_failed(run_id, failure)
                raise failure from e
            except Exception as e:
                # configuration errors and DimensionMismatch propagate unchanged
                enter(CalibrationPhase.FAILED)
                iterations = optimizer.iterations if optimizer is not None else 0
                self.diagnostics.run_failed(
                    run_id,
                    CalculationFailure("Calibration failed", cause=e, iterations=iterations),
                )
                raise
            finally:
                if evaluator is not None:
                    evaluator.close()

            if state.termination == TerminationReason.CONVERGED:
                enter(CalibrationPhase.CONVERGED)
            else:
                enter(CalibrationPhase.ITERATION_LIMIT_REACHED)

            enter(CalibrationPhase.FINALIZING)
            calibrated = model.with_parameters(optimizer.best_fit_parameters)
            elapsed = time.perf_counter() - start

            record = CalibrationRecord(
                run_id=run_id,
                iterations=optimizer.iterations,
                accuracy_achieved=optimizer.accuracy_achieved,
                parameters=np.array(optimizer.best_fit_parameters),
                termination=state.termination.value,
                evaluations=objective.evaluation_count,
                instrument_failures=evaluator.failure_counts,
                elapsed_seconds=elapsed,
            )
            self.diagnostics.run_completed(record)
            enter(CalibrationPhase.DONE)

        return CalibrationRunResult(
            model=calibrated,
            termination=state.termination,
            iterations=optimizer.iterations,
            accuracy_achieved=optimizer.accuracy_achieved,
            parameters=optimizer.best_fit_parameters,
            evaluations=objective.evaluation_count,
            instrument_failures=record.instrument_failures,
            phases=phases,
            elapsed=elapsed,
            run_id=run_id,
        )

    def _context_builder(self, settings: CalibrationSettings) -> ContextBuilder:
        if not self.is_monte_carlo:
            return self.build_context

        driver = self.driver
        if driver is None:
            driver = self.driver_factory(
                number_of_paths=settings.number_of_paths, seed=settings.seed
            )
            logger.debug(f"Created stochastic driver {driver!r}")
        return partial(self.build_context, driver=driver)


def calibrate(
    model: ParametricModel,
    instruments: Sequence[CalibrationInstrument],
    build_context: ContextBuilder,
    settings: Optional[CalibrationSettings] = None,
    **options,
) -> ParametricModel:
    """
    Calibrate ``model`` and return the calibrated clone.

    ``options`` are passed to ``CalibrationOrchestrator`` (``driver``,
    ``driver_factory``, ``optimizer_factory``, ``diagnostics``), except
    ``cancel_event`` which is passed to the run.

    Example:
        >>> calibrated = calibrate(
        ...     surface, instruments, market.with_volatility_surface,
        ...     settings=CalibrationSettings(max_iterations=200),
        ... )
    """
    cancel_event = options.pop("cancel_event", None)
    orchestrator = CalibrationOrchestrator(build_context, **options)
    return orchestrator.calibrate(
        model, instruments, settings=settings, cancel_event=cancel_event
    ).model
