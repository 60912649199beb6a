"""
Parametric model protocol.

The calibration engine is written once against the capability set
``{get_parameters, with_parameters}``. Models implement it structurally;
there is no calibration base class to inherit from.
"""

from __future__ import annotations

from typing import Protocol, Sequence, Union, runtime_checkable

import numpy as np

from ..errors import DimensionMismatch

ParameterVector = Union[Sequence[float], np.ndarray]


@runtime_checkable
class ParametricModel(Protocol):
    """
    A model fully determined by an ordered vector of real parameters.

    Implementations must be immutable: ``with_parameters`` returns a new
    instance (or ``self`` when the vector is unchanged) and never mutates
    the receiver. The vector length is fixed for the model's lifetime.

    A model whose parameters have a restricted domain may also provide
    ``default_bounds() -> (lower, upper)``; the orchestrator uses it for
    bounds the caller leaves unset.
    """

    def get_parameters(self) -> np.ndarray:
        """Return the free parameters as a read-only float64 array."""
        ...

    def with_parameters(self, parameters: ParameterVector) -> "ParametricModel":
        """Return a clone using ``parameters``; raise DimensionMismatch on bad length."""
        ...


def frozen_vector(values: ParameterVector) -> np.ndarray:
    """Copy ``values`` into a one-dimensional read-only float64 array."""
    vector = np.array(values, dtype=np.float64).reshape(-1)
    vector.setflags(write=False)
    return vector


def check_parameters(current: np.ndarray, parameters: ParameterVector) -> np.ndarray:
    """
    Validate a candidate vector against the current parameters.

    Args:
        current: The model's current parameter vector
        parameters: Candidate vector

    Returns:
        The candidate as a read-only float64 array

    Raises:
        DimensionMismatch: If the lengths differ
    """
    candidate = np.asarray(parameters, dtype=np.float64)
    if candidate.ndim != 1 or candidate.shape[0] != current.shape[0]:
        actual = candidate.shape[0] if candidate.ndim == 1 else candidate.size
        raise DimensionMismatch(expected=current.shape[0], actual=actual)
    return frozen_vector(candidate)
