"""
Calibration instruments.

A calibration instrument pairs a product with the market value the model
should reproduce, and a weight applied to its residual.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Protocol, runtime_checkable

from ..pricing.products import VolatilityQuote

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)


@runtime_checkable
class Product(Protocol):
    """Anything that can be valued against a pricing context."""

    def value(self, evaluation_time: float, context: Any) -> float:
        ...


@dataclass(frozen=True)
class CalibrationInstrument:
    """
    Product with target value and residual weight.

    Attributes:
        product: Product valued under each candidate context
        target_value: Observed market value
        weight: Multiplier applied to the residual ``value - target``
    """

    product: Product
    target_value: float
    weight: float = 1.0

    def __post_init__(self):
        if not math.isfinite(self.target_value):
            raise ValueError(f"target_value must be finite, got {self.target_value}")
        if not math.isfinite(self.weight):
            raise ValueError(f"weight must be finite, got {self.weight}")


def instruments_from_frame(
    frame: "pd.DataFrame",
    surface_name: str,
    weight_column: str = "weight",
) -> List[CalibrationInstrument]:
    """
    Build implied-volatility quote instruments from a market data frame.

    Args:
        frame: DataFrame with columns ``strike``, ``maturity``, ``implied_vol``
            and optionally a weight column
        surface_name: Name of the volatility surface the quotes belong to
        weight_column: Column holding residual weights (1.0 if missing)

    Returns:
        One instrument per row, in row order

    Raises:
        ValueError: If required columns are missing
    """
    required = {"strike", "maturity", "implied_vol"}
    missing = required - set(frame.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    quotes = frame.dropna(subset=sorted(required))
    dropped = len(frame) - len(quotes)
    if dropped:
        logger.warning(f"Dropped {dropped} quotes with missing values for {surface_name}")

    has_weights = weight_column in quotes.columns
    instruments = []
    for row in quotes.itertuples(index=False):
        weight = float(getattr(row, weight_column)) if has_weights else 1.0
        instruments.append(
            CalibrationInstrument(
                product=VolatilityQuote(
                    surface_name=surface_name,
                    maturity=float(row.maturity),
                    strike=float(row.strike),
                ),
                target_value=float(row.implied_vol),
                weight=weight,
            )
        )

    logger.debug(f"Built {len(instruments)} instruments for surface {surface_name}")
    return instruments
