"""
Calibration error taxonomy.

    CalibrationError
    ├── DimensionMismatch          candidate vector has the wrong length (fatal)
    ├── InstrumentEvaluationError  one instrument failed to price (absorbed)
    ├── SolverEvaluationError      pricing context could not be built (fatal)
    ├── SolverException            optimizer diverged or evaluation failed
    │   └── CalibrationCancelled   run cancelled through its cancel event
    └── CalculationFailure         top-level failure returned to callers

Only ``InstrumentEvaluationError`` is recovered locally: the residual
evaluator substitutes a zero residual and reports the error to the
diagnostics sink instead of raising it.
"""

from __future__ import annotations

from typing import Any, Optional


class CalibrationError(Exception):
    """Base class for all calibration errors."""

    pass


class DimensionMismatch(CalibrationError, ValueError):
    """Raised when a parameter vector does not match the model's parameter count."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Parameter vector has length {actual}, model expects {expected}"
        )
        self.expected = expected
        self.actual = actual


class InstrumentEvaluationError(CalibrationError):
    """
    A single calibration instrument failed to price under a candidate context.

    Attributes:
        index: Position of the instrument in the instrument list
        product: The product that failed
        cause: The underlying exception, or None for a non-finite value
    """

    def __init__(
        self,
        index: int,
        product: Any,
        cause: Optional[BaseException] = None,
        value: Optional[float] = None,
    ):
        if cause is not None:
            reason = f"{type(cause).__name__}: {cause}"
        else:
            reason = f"non-finite value {value}"
        super().__init__(f"Instrument {index} ({product!r}) failed: {reason}")
        self.index = index
        self.product = product
        self.cause = cause
        self.value = value


class SolverEvaluationError(CalibrationError):
    """The pricing context could not be constructed for a candidate vector."""

    pass


class SolverException(CalibrationError):
    """The optimizer diverged or its objective function failed."""

    pass


class CalibrationCancelled(SolverException):
    """The calibration run was cancelled before the optimizer terminated."""

    pass


class CalculationFailure(CalibrationError):
    """
    Top-level calibration failure.

    Attributes:
        cause: Root cause of the failure
        iterations: Optimizer iterations completed before the failure
    """

    def __init__(self, message: str, cause: BaseException, iterations: int):
        super().__init__(f"{message} after {iterations} iterations: {cause}")
        self.cause = cause
        self.iterations = iterations
