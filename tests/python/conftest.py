"""
Pytest configuration for quant_calibration tests.
"""

from dataclasses import dataclass
from functools import partial

import numpy as np
import pytest

from quant_calibration.calibration import CalibrationInstrument
from quant_calibration.models import SABRVolatilitySurface, ShortRateVolatilityModel
from quant_calibration.models.base import check_parameters, frozen_vector
from quant_calibration.monitoring import RecordingDiagnostics
from quant_calibration.pricing import (
    AnalyticPricingContext,
    BrownianMotion,
    FlatForwardCurve,
    ShortRateCaplet,
    ShortRateMonteCarloSimulation,
    TimeDiscretization,
    VolatilityQuote,
)


class VectorModel:
    """Model whose pricing context is the model itself."""

    def __init__(self, parameters):
        self._parameters = frozen_vector(parameters)

    def get_parameters(self):
        return self._parameters

    def with_parameters(self, parameters):
        candidate = check_parameters(self._parameters, parameters)
        if np.array_equal(candidate, self._parameters):
            return self
        return VectorModel(candidate)


@dataclass(frozen=True)
class LinearProduct:
    """Values to ``scale * parameters[index]`` under a VectorModel."""

    scale: float = 1.0
    index: int = 0

    def value(self, evaluation_time, context):
        return self.scale * float(context.get_parameters()[self.index])


@dataclass(frozen=True)
class FailingProduct:
    """Product that always fails to price."""

    def value(self, evaluation_time, context):
        raise RuntimeError("pricing failed")


@dataclass(frozen=True)
class NonFiniteProduct:
    """Product whose valuation is NaN."""

    def value(self, evaluation_time, context):
        return float("nan")


def model_context(model, driver=None):
    """Context builder for VectorModel."""
    return model


@pytest.fixture
def vector_model():
    """Factory for VectorModel instances."""
    return lambda *parameters: VectorModel(list(parameters))


@pytest.fixture
def linear_product():
    return LinearProduct


@pytest.fixture
def failing_product():
    return FailingProduct()


@pytest.fixture
def non_finite_product():
    return NonFiniteProduct()


@pytest.fixture
def context_builder():
    return model_context


@pytest.fixture
def diagnostics():
    return RecordingDiagnostics()


@pytest.fixture
def two_instruments():
    """Two instruments with targets 0.10 and 0.12 that no single p fits."""
    return [
        CalibrationInstrument(LinearProduct(1.0), target_value=0.10),
        CalibrationInstrument(LinearProduct(1.0), target_value=0.12),
    ]


@pytest.fixture
def consistent_instruments():
    """Two instruments exactly fitted by p = 0.1."""
    return [
        CalibrationInstrument(LinearProduct(1.0), target_value=0.10),
        CalibrationInstrument(LinearProduct(1.2), target_value=0.12),
    ]


@pytest.fixture
def sabr_surface():
    """SABR surface with known parameters."""
    return SABRVolatilitySurface("SX5E", alpha=0.2, rho=-0.3, nu=0.4, beta=0.5)


@pytest.fixture
def analytic_market():
    """Analytic pricing context with forward 1.0 and no surfaces."""
    return AnalyticPricingContext(FlatForwardCurve(1.0))


@pytest.fixture
def sabr_quotes(sabr_surface, analytic_market):
    """Implied-vol instruments generated from ``sabr_surface``."""
    context = analytic_market.with_volatility_surface(sabr_surface)
    instruments = []
    for maturity in (0.5, 1.0, 2.0):
        for strike in (0.8, 0.9, 1.0, 1.1, 1.2):
            product = VolatilityQuote(sabr_surface.name, maturity=maturity, strike=strike)
            instruments.append(
                CalibrationInstrument(product, target_value=product.value(0.0, context))
            )
    return instruments


@pytest.fixture
def driver_grid():
    """Quarterly simulation grid up to 2 years."""
    return TimeDiscretization.from_step(0.0, number_of_steps=8, step=0.25)


@pytest.fixture
def short_rate_model():
    """Two-piece volatility model with breakpoint at 1 year."""
    grid = TimeDiscretization([0.0, 1.0])
    return ShortRateVolatilityModel(grid, volatility=[0.008, 0.012], mean_reversion=[0.1, 0.1])


@pytest.fixture
def short_rate_context():
    return partial(ShortRateMonteCarloSimulation, initial_rate=0.02)


@pytest.fixture
def caplet_instruments(short_rate_model, driver_grid, short_rate_context):
    """ATM caplets priced under ``short_rate_model`` with 500 paths."""
    driver = BrownianMotion(driver_grid, number_of_paths=500, seed=31415)
    context = short_rate_context(short_rate_model, driver=driver)
    instruments = []
    for maturity in (1.0, 2.0):
        product = ShortRateCaplet(maturity=maturity, strike=0.02)
        instruments.append(
            CalibrationInstrument(product, target_value=product.value(0.0, context))
        )
    return instruments
