"""
Pricing collaborators for the calibration engine.

Provides the pieces a calibration needs around the model itself:
- TimeDiscretization / BrownianMotion: seeded stochastic driver
- AnalyticPricingContext / ShortRateMonteCarloSimulation: pricing contexts
- VolatilityQuote, ZeroCouponBond, ShortRateCaplet: calibration products
"""

from .brownian_motion import BrownianMotion, TimeDiscretization
from .contexts import AnalyticPricingContext, ShortRateMonteCarloSimulation
from .curves import FlatDiscountCurve, FlatForwardCurve
from .products import ShortRateCaplet, VolatilityQuote, ZeroCouponBond

__all__ = [
    "BrownianMotion",
    "TimeDiscretization",
    "AnalyticPricingContext",
    "ShortRateMonteCarloSimulation",
    "FlatDiscountCurve",
    "FlatForwardCurve",
    "ShortRateCaplet",
    "VolatilityQuote",
    "ZeroCouponBond",
]
