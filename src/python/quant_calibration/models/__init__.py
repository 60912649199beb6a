"""
Parametric models.

Contains:
- ParametricModel protocol shared by every calibratable model
- ShortRateVolatilityModel: piecewise-constant short-rate volatility
- SABRVolatilitySurface: parametric SABR volatility surface

Example:
    >>> from quant_calibration.models import SABRVolatilitySurface
    >>> surface = SABRVolatilitySurface("SPX", alpha=0.2, rho=-0.3, nu=0.4)
    >>> clone = surface.with_parameters([0.25, -0.3, 0.4])
"""

from .base import ParametricModel, check_parameters, frozen_vector
from .sabr import SABRVolatilitySurface, sabr_implied_vol
from .short_rate import ShortRateVolatilityModel

__all__ = [
    "ParametricModel",
    "check_parameters",
    "frozen_vector",
    "SABRVolatilitySurface",
    "sabr_implied_vol",
    "ShortRateVolatilityModel",
]
