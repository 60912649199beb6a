"""
Pricing contexts.

A pricing context is the fully assembled environment a product is valued
against: curves, volatility surfaces, or a simulated model. Contexts are
immutable once built. During calibration a fresh context is built for every
candidate parameter vector by a context builder, a plain function value
such as ``AnalyticPricingContext.with_volatility_surface`` or
``functools.partial(ShortRateMonteCarloSimulation, initial_rate=0.02)``.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping, Optional

import numpy as np

from .brownian_motion import BrownianMotion
from .curves import FlatDiscountCurve

logger = logging.getLogger(__name__)


class AnalyticPricingContext:
    """
    Context for closed-form valuation: curves plus named volatility surfaces.

    Example:
        >>> base = AnalyticPricingContext(FlatForwardCurve(100.0))
        >>> context = base.with_volatility_surface(surface)
        >>> context.get_volatility_surface(surface.name) is surface
        True
    """

    def __init__(
        self,
        forward_curve: Any,
        discount_curve: Optional[Any] = None,
        volatility_surfaces: Optional[Mapping[str, Any]] = None,
    ):
        self.forward_curve = forward_curve
        self.discount_curve = discount_curve or FlatDiscountCurve(0.0)
        self._volatility_surfaces = MappingProxyType(dict(volatility_surfaces or {}))

    @property
    def volatility_surfaces(self) -> Mapping[str, Any]:
        return self._volatility_surfaces

    def with_volatility_surface(self, surface: Any) -> "AnalyticPricingContext":
        """Return a new context in which ``surface`` replaces the surface of the same name."""
        surfaces = dict(self._volatility_surfaces)
        surfaces[surface.name] = surface
        return AnalyticPricingContext(
            self.forward_curve, self.discount_curve, surfaces
        )

    def get_volatility_surface(self, name: str) -> Any:
        try:
            return self._volatility_surfaces[name]
        except KeyError:
            raise KeyError(
                f"No volatility surface named {name!r}; "
                f"available: {sorted(self._volatility_surfaces)}"
            ) from None

    def __repr__(self) -> str:
        return f"AnalyticPricingContext(surfaces={sorted(self._volatility_surfaces)})"


class ShortRateMonteCarloSimulation:
    """
    Euler simulation of a mean-reverting short rate.

        r_{i+1} = r_i + a(t_i) (r_inf - r_i) Δt_i + σ(t_i) ΔW_i

    The simulation runs on the driver's time grid and is computed eagerly in
    the constructor, so a context that could not be simulated is never
    handed to a product.

    Args:
        model: Short-rate volatility model providing σ(t) and a(t)
        driver: Shared Brownian motion (factor 0 is used)
        initial_rate: Short rate at time 0
        long_term_rate: Mean-reversion level (defaults to ``initial_rate``)
    """

    def __init__(
        self,
        model: Any,
        driver: BrownianMotion,
        initial_rate: float = 0.02,
        long_term_rate: Optional[float] = None,
    ):
        self.model = model
        self.driver = driver
        self.initial_rate = initial_rate
        self.long_term_rate = initial_rate if long_term_rate is None else long_term_rate

        self._rates, self._discount_factors = self._simulate()

    def _simulate(self):
        grid = self.driver.time_discretization
        times = grid.times
        dt = grid.time_steps
        n_paths = self.driver.number_of_paths

        rates = np.empty((times.size, n_paths))
        rates[0] = self.initial_rate
        for i in range(grid.number_of_steps):
            t = times[i]
            drift = self.model.get_mean_reversion(t) * (self.long_term_rate - rates[i])
            diffusion = self.model.get_volatility(t) * self.driver.get_increment(i)
            rates[i + 1] = rates[i] + drift * dt[i] + diffusion

        integrated = np.zeros_like(rates)
        integrated[1:] = np.cumsum(rates[:-1] * dt[:, None], axis=0)
        discount_factors = np.exp(-integrated)

        if not np.all(np.isfinite(rates)):
            raise FloatingPointError("Short-rate simulation produced non-finite rates")

        rates.setflags(write=False)
        discount_factors.setflags(write=False)
        return rates, discount_factors

    def get_time_index(self, time: float) -> int:
        return self.driver.time_discretization.get_time_index(time)

    def get_short_rate(self, time: float) -> np.ndarray:
        """Simulated short rate on all paths at the grid time at or before ``time``."""
        return self._rates[self.get_time_index(time)]

    def get_discount_factor(self, time: float) -> np.ndarray:
        """Pathwise discount factor exp(-∫_0^t r_s ds)."""
        return self._discount_factors[self.get_time_index(time)]

    @property
    def number_of_paths(self) -> int:
        return self.driver.number_of_paths

    def __repr__(self) -> str:
        return (
            f"ShortRateMonteCarloSimulation(r0={self.initial_rate}, "
            f"paths={self.number_of_paths})"
        )
