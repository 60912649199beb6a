"""
Model Calibration Engine.

Fits the free parameters of any parametric model so that it reproduces a
set of observed market values in a least-squares sense:
- CalibrationInstrument: product, target value and residual weight
- ResidualEvaluator: fault-tolerant, optionally parallel residual vector
- ObjectiveFunction: residual objective with RMS bookkeeping
- LevenbergMarquardtOptimizer / ScipyLeastSquaresOptimizer: bounded solvers
- CalibrationOrchestrator: runs a calibration end to end

Example:
    >>> from quant_calibration.calibration import calibrate
    >>> calibrated = calibrate(surface, instruments, market.with_volatility_surface)
    >>> print(calibrated.get_parameters())

References:
    - Levenberg (1944), Marquardt (1963): damped least squares
    - Hagan et al. (2002): "Managing smile risk"
"""

from .executors import ContextThreadPoolExecutor, SynchronousExecutor, make_executor
from .instruments import CalibrationInstrument, Product, instruments_from_frame
from .objective import ObjectiveFunction, root_mean_square
from .optimizer import (
    LevenbergMarquardtFactory,
    LevenbergMarquardtOptimizer,
    Optimizer,
    OptimizerFactory,
    OptimizerState,
    TerminationReason,
    finite_difference_jacobian,
)
from .orchestrator import (
    CalibrationOrchestrator,
    CalibrationPhase,
    CalibrationRunResult,
    calibrate,
)
from .residuals import ResidualEvaluation, ResidualEvaluator
from .scipy_optimizer import ScipyLeastSquaresFactory, ScipyLeastSquaresOptimizer

__all__ = [
    "ContextThreadPoolExecutor",
    "SynchronousExecutor",
    "make_executor",
    "CalibrationInstrument",
    "Product",
    "instruments_from_frame",
    "ObjectiveFunction",
    "root_mean_square",
    "LevenbergMarquardtFactory",
    "LevenbergMarquardtOptimizer",
    "Optimizer",
    "OptimizerFactory",
    "OptimizerState",
    "TerminationReason",
    "finite_difference_jacobian",
    "CalibrationOrchestrator",
    "CalibrationPhase",
    "CalibrationRunResult",
    "calibrate",
    "ResidualEvaluation",
    "ResidualEvaluator",
    "ScipyLeastSquaresFactory",
    "ScipyLeastSquaresOptimizer",
]
