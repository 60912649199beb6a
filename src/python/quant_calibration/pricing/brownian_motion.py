"""
Stochastic driver for Monte-Carlo pricing contexts.

A ``BrownianMotion`` is created once per calibration run and shared by every
candidate context, so all candidates are valued on common random numbers.
Increments are generated lazily on first access and are read-only
afterwards, which makes the driver safe to share between worker threads.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class TimeDiscretization:
    """
    Strictly increasing grid of simulation times.

    Example:
        >>> grid = TimeDiscretization.from_step(0.0, number_of_steps=4, step=0.25)
        >>> grid.get_time_index(0.5)
        2
    """

    def __init__(self, times: Sequence[float]):
        times = np.array(times, dtype=np.float64).reshape(-1)
        if times.size < 2:
            raise ValueError("A time discretization needs at least two times")
        if np.any(np.diff(times) <= 0):
            raise ValueError("Times must be strictly increasing")
        times.setflags(write=False)
        self._times = times

    @classmethod
    def from_step(
        cls, initial: float, number_of_steps: int, step: float
    ) -> "TimeDiscretization":
        """Create an equidistant grid with ``number_of_steps`` steps."""
        if number_of_steps <= 0:
            raise ValueError("number_of_steps must be positive")
        if step <= 0:
            raise ValueError("step must be positive")
        return cls(initial + step * np.arange(number_of_steps + 1))

    @property
    def times(self) -> np.ndarray:
        return self._times

    @property
    def time_steps(self) -> np.ndarray:
        return np.diff(self._times)

    @property
    def number_of_steps(self) -> int:
        return self._times.size - 1

    def get_time_index(self, time: float) -> int:
        """
        Index of the grid point at or immediately before ``time``.

        Times before the first grid point map to 0, times after the last one
        map to the last index.
        """
        index = int(np.searchsorted(self._times, time, side="right")) - 1
        return min(max(index, 0), self._times.size - 1)

    def __len__(self) -> int:
        return self._times.size

    def __repr__(self) -> str:
        return (
            f"TimeDiscretization({self._times[0]:g}..{self._times[-1]:g}, "
            f"steps={self.number_of_steps})"
        )


class BrownianMotion:
    """
    Seeded multi-factor Brownian increments.

    Increments have shape ``(number_of_steps, number_of_factors,
    number_of_paths)`` and standard deviation ``sqrt(dt)``.

    Args:
        time_discretization: Simulation grid
        number_of_factors: Number of independent factors
        number_of_paths: Number of Monte-Carlo paths
        seed: Seed of the numpy random generator
    """

    def __init__(
        self,
        time_discretization: TimeDiscretization,
        number_of_factors: int = 1,
        number_of_paths: int = 2000,
        seed: int = 31415,
    ):
        if number_of_factors <= 0:
            raise ValueError("number_of_factors must be positive")
        if number_of_paths <= 0:
            raise ValueError("number_of_paths must be positive")

        self.time_discretization = time_discretization
        self.number_of_factors = number_of_factors
        self.number_of_paths = number_of_paths
        self.seed = seed

        self._increments: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    @property
    def increments(self) -> np.ndarray:
        """Brownian increments, generated on first access."""
        if self._increments is None:
            with self._lock:
                if self._increments is None:
                    self._increments = self._generate()
        return self._increments

    def _generate(self) -> np.ndarray:
        rng = np.random.default_rng(self.seed)
        shape = (
            self.time_discretization.number_of_steps,
            self.number_of_factors,
            self.number_of_paths,
        )
        sqrt_dt = np.sqrt(self.time_discretization.time_steps)[:, None, None]
        increments = rng.standard_normal(shape) * sqrt_dt
        increments.setflags(write=False)

        logger.debug(
            f"Generated Brownian increments: steps={shape[0]}, "
            f"factors={shape[1]}, paths={shape[2]}, seed={self.seed}"
        )
        return increments

    def get_increment(self, time_index: int, factor: int = 0) -> np.ndarray:
        """Increment over ``[t_i, t_{i+1})`` for one factor across all paths."""
        return self.increments[time_index, factor]

    def __repr__(self) -> str:
        return (
            f"BrownianMotion(factors={self.number_of_factors}, "
            f"paths={self.number_of_paths}, seed={self.seed})"
        )
