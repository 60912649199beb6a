"""
Minimal market curves used by analytic pricing contexts.

Curve construction and bootstrapping are not part of this package; these
flat curves are enough to give quote products a forward and a discount
factor.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class FlatForwardCurve:
    """Forward curve returning the same forward for every maturity."""

    forward: float

    def __post_init__(self):
        if self.forward <= 0:
            raise ValueError(f"forward must be positive, got {self.forward}")

    def get_forward(self, maturity: float) -> float:
        return self.forward


@dataclass(frozen=True)
class FlatDiscountCurve:
    """Discount curve with a continuously compounded flat zero rate."""

    rate: float

    def get_discount_factor(self, maturity: float) -> float:
        return float(np.exp(-self.rate * maturity))
