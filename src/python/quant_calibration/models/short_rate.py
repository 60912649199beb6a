"""
Piecewise-constant short-rate volatility model.

The short rate follows

    dr_t = a(t) (r_inf - r_t) dt + σ(t) dW_t

where the volatility σ and the mean reversion a are constant on each
interval of a model time discretization. The model carries no simulation
state; it only answers "what are σ and a at time t". A pricing context
(see ``quant_calibration.pricing.contexts``) combines it with a
Brownian driver.

Free parameters: the volatilities, optionally followed by the mean
reversions when ``calibrate_mean_reversion`` is set.
"""

from __future__ import annotations

from typing import Dict, Sequence

import numpy as np

from ..pricing.brownian_motion import TimeDiscretization
from .base import ParameterVector, check_parameters, frozen_vector


class ShortRateVolatilityModel:
    """
    Short-rate volatility model implementing the parametric model protocol.

    Example:
        >>> grid = TimeDiscretization.from_step(0.0, 4, 0.5)
        >>> model = ShortRateVolatilityModel(grid, volatility=[0.01] * 5,
        ...                                  mean_reversion=[0.1] * 5)
        >>> model.get_parameters()
        array([0.01, 0.01, 0.01, 0.01, 0.01])
    """

    def __init__(
        self,
        time_discretization: TimeDiscretization,
        volatility: Sequence[float],
        mean_reversion: Sequence[float],
        calibrate_mean_reversion: bool = False,
    ):
        """
        Initialize the model.

        Args:
            time_discretization: Model grid; values apply from each grid time
            volatility: One volatility per grid time
            mean_reversion: One mean-reversion speed per grid time
            calibrate_mean_reversion: Expose mean reversions as free parameters

        Raises:
            ValueError: If array lengths do not match the grid or
                volatilities are negative
        """
        volatility = frozen_vector(volatility)
        mean_reversion = frozen_vector(mean_reversion)

        n = len(time_discretization)
        if volatility.size != n:
            raise ValueError(
                f"Expected {n} volatilities, got {volatility.size}"
            )
        if mean_reversion.size != n:
            raise ValueError(
                f"Expected {n} mean reversions, got {mean_reversion.size}"
            )
        if np.any(volatility < 0):
            raise ValueError("volatility must be non-negative")

        self._time_discretization = time_discretization
        self._volatility = volatility
        self._mean_reversion = mean_reversion
        self._calibrate_mean_reversion = calibrate_mean_reversion

    @property
    def time_discretization(self) -> TimeDiscretization:
        return self._time_discretization

    @property
    def calibrate_mean_reversion(self) -> bool:
        return self._calibrate_mean_reversion

    def get_parameters(self) -> np.ndarray:
        if self._calibrate_mean_reversion:
            return frozen_vector(
                np.concatenate([self._volatility, self._mean_reversion])
            )
        return self._volatility

    def with_parameters(self, parameters: ParameterVector) -> "ShortRateVolatilityModel":
        current = self.get_parameters()
        candidate = check_parameters(current, parameters)
        if np.array_equal(candidate, current):
            return self

        n = self._volatility.size
        mean_reversion = candidate[n:] if self._calibrate_mean_reversion else self._mean_reversion
        return ShortRateVolatilityModel(
            self._time_discretization,
            volatility=candidate[:n],
            mean_reversion=mean_reversion,
            calibrate_mean_reversion=self._calibrate_mean_reversion,
        )

    def get_volatility(self, time: float) -> float:
        """Volatility in effect at ``time``."""
        return float(self._volatility[self._time_discretization.get_time_index(time)])

    def get_mean_reversion(self, time: float) -> float:
        """Mean-reversion speed in effect at ``time``."""
        return float(
            self._mean_reversion[self._time_discretization.get_time_index(time)]
        )

    def to_dict(self) -> Dict[str, object]:
        """Convert to dictionary."""
        return {
            "times": self._time_discretization.times.tolist(),
            "volatility": self._volatility.tolist(),
            "mean_reversion": self._mean_reversion.tolist(),
            "calibrate_mean_reversion": self._calibrate_mean_reversion,
        }

    @classmethod
    def flat(
        cls,
        time_discretization: TimeDiscretization,
        volatility: float,
        mean_reversion: float,
        calibrate_mean_reversion: bool = False,
    ) -> "ShortRateVolatilityModel":
        """Create a model with the same volatility and mean reversion everywhere."""
        n = len(time_discretization)
        return cls(
            time_discretization,
            volatility=np.full(n, volatility),
            mean_reversion=np.full(n, mean_reversion),
            calibrate_mean_reversion=calibrate_mean_reversion,
        )

    def __repr__(self) -> str:
        return (
            f"ShortRateVolatilityModel(parameters={self.get_parameters().size}, "
            f"calibrate_mean_reversion={self._calibrate_mean_reversion})"
        )
