"""
Quantitative Model Calibration

A calibration engine fitting the free parameters of financial models, such
as short-rate volatility models and parametric volatility surfaces, to
observed market values.

Core components:
- ParametricModel protocol with immutable, thread-safe cloning
- Fault-tolerant residual evaluation on a bounded worker pool
- Bounded Levenberg-Marquardt and scipy least-squares optimizers
- Seeded Monte-Carlo driver and reference pricing contexts
- Structured logging, diagnostics sinks and Prometheus metrics

Usage:
    from quant_calibration import calibrate, CalibrationSettings
    calibrated = calibrate(model, instruments, build_context,
                           settings=CalibrationSettings(max_iterations=200))
"""

__version__ = "1.0.0"
__author__ = "Quantitative Research Team"

from . import calibration, models, monitoring, pricing
from .calibration import (
    CalibrationInstrument,
    CalibrationOrchestrator,
    CalibrationRunResult,
    calibrate,
)
from .config import (
    ANALYTIC_DEFAULTS,
    MONTE_CARLO_DEFAULTS,
    CalibrationSettings,
    Config,
    load_config,
    setup_logging,
)
from .errors import (
    CalculationFailure,
    CalibrationCancelled,
    CalibrationError,
    DimensionMismatch,
    InstrumentEvaluationError,
    SolverEvaluationError,
    SolverException,
)
from .models import ParametricModel


def get_version() -> str:
    """Return the package version."""
    return __version__


__all__ = [
    "__version__",
    "get_version",
    "calibration",
    "models",
    "monitoring",
    "pricing",
    "CalibrationInstrument",
    "CalibrationOrchestrator",
    "CalibrationRunResult",
    "calibrate",
    "ANALYTIC_DEFAULTS",
    "MONTE_CARLO_DEFAULTS",
    "CalibrationSettings",
    "Config",
    "load_config",
    "setup_logging",
    "CalculationFailure",
    "CalibrationCancelled",
    "CalibrationError",
    "DimensionMismatch",
    "InstrumentEvaluationError",
    "SolverEvaluationError",
    "SolverException",
    "ParametricModel",
]
