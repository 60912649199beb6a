"""
Reference calibration products.

Every product implements ``value(evaluation_time, context) -> float``.
Products are frozen dataclasses and may be valued concurrently against the
same context.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class VolatilityQuote:
    """
    Implied volatility of a named surface at one (maturity, strike) point.

    Valued against an ``AnalyticPricingContext``; the forward is read from
    the context's forward curve.
    """

    surface_name: str
    maturity: float
    strike: float

    def __post_init__(self):
        if self.maturity <= 0:
            raise ValueError("maturity must be positive")
        if self.strike <= 0:
            raise ValueError("strike must be positive")

    def value(self, evaluation_time: float, context) -> float:
        time_to_maturity = self.maturity - evaluation_time
        if time_to_maturity <= 0:
            raise ValueError(
                f"Quote matures at {self.maturity}, before evaluation time {evaluation_time}"
            )
        surface = context.get_volatility_surface(self.surface_name)
        forward = context.forward_curve.get_forward(self.maturity)
        return surface.implied_volatility(self.strike, time_to_maturity, forward)


@dataclass(frozen=True)
class ZeroCouponBond:
    """Zero-coupon bond paying 1 at ``maturity``, valued by Monte-Carlo."""

    maturity: float

    def value(self, evaluation_time: float, context) -> float:
        discount = context.get_discount_factor(self.maturity)
        numeraire = context.get_discount_factor(evaluation_time)
        return float(np.mean(discount / numeraire))


@dataclass(frozen=True)
class ShortRateCaplet:
    """
    Option on the short rate fixing at ``maturity``.

    Pays ``notional * period * max(r(T) - K, 0)`` at T.
    """

    maturity: float
    strike: float
    period: float = 0.25
    notional: float = 1.0

    def __post_init__(self):
        if self.maturity <= 0:
            raise ValueError("maturity must be positive")
        if self.period <= 0:
            raise ValueError("period must be positive")

    def value(self, evaluation_time: float, context) -> float:
        rate = context.get_short_rate(self.maturity)
        payoff = self.notional * self.period * np.maximum(rate - self.strike, 0.0)
        discount = context.get_discount_factor(self.maturity)
        numeraire = context.get_discount_factor(evaluation_time)
        return float(np.mean(payoff * discount / numeraire))
