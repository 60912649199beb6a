"""
Parametric SABR volatility surface.

Implements the Hagan et al. (2002) asymptotic formula for the Black implied
volatility of the SABR model:

    dF_t = σ_t F_t^β dW_t^F
    dσ_t = ν σ_t dW_t^σ
    dW_t^F · dW_t^σ = ρ dt

Parameters:
    α (alpha): Initial volatility level
    β (beta): CEV exponent, fixed for the surface
    ρ (rho): Correlation between forward and volatility
    ν (nu): Volatility of volatility

The free parameter vector is ``[alpha, rho, nu]``. Since rho is usually
negative and must stay inside [-1, 1], the surface provides
``default_bounds()``, which the orchestrator uses whenever the settings
leave the bounds unset.

Reference:
    Hagan, P. S., Kumar, D., Lesniewski, A. S., & Woodward, D. E. (2002).
    "Managing smile risk." Wilmott Magazine, 1, 84-108.
"""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np

from .base import ParameterVector, check_parameters, frozen_vector


def sabr_implied_vol(
    F: float,
    K: float,
    T: float,
    alpha: float,
    beta: float,
    rho: float,
    nu: float,
) -> float:
    """
    Compute SABR implied volatility using Hagan's asymptotic formula.

    Args:
        F: Forward price
        K: Strike price
        T: Time to maturity
        alpha: SABR alpha parameter
        beta: SABR beta parameter
        rho: SABR rho parameter
        nu: SABR nu parameter

    Returns:
        Implied Black volatility

    Raises:
        ValueError: If forward or strike is not positive
    """
    if F <= 0 or K <= 0:
        raise ValueError(f"Forward and strike must be positive, got F={F}, K={K}")

    one_minus_beta = 1 - beta
    one_minus_beta_sq = one_minus_beta * one_minus_beta

    # ATM case separately to avoid 0/0 in z / x(z)
    if abs(F - K) < 1e-10:
        F_beta = F ** one_minus_beta
        term1 = one_minus_beta_sq / 24 * alpha * alpha / (F_beta * F_beta)
        term2 = rho * beta * nu * alpha / (4 * F_beta)
        term3 = (2 - 3 * rho * rho) * nu * nu / 24
        return alpha / F_beta * (1 + (term1 + term2 + term3) * T)

    FK = F * K
    log_FK = np.log(F / K)
    FK_beta = FK ** (one_minus_beta / 2)

    z = (nu / alpha) * FK_beta * log_FK
    sqrt_term = np.sqrt(1 - 2 * rho * z + z * z)
    x_z = np.log((sqrt_term + z - rho) / (1 - rho))

    if abs(x_z) < 1e-10:
        zeta = 1.0
    else:
        zeta = z / x_z

    term1 = one_minus_beta_sq / 24 * alpha * alpha / (FK_beta * FK_beta)
    term2 = rho * beta * nu * alpha / (4 * FK_beta)
    term3 = (2 - 3 * rho * rho) * nu * nu / 24
    bracket = 1 + (term1 + term2 + term3) * T

    denom_term = 1 + one_minus_beta_sq / 24 * log_FK * log_FK
    denom_term += one_minus_beta_sq * one_minus_beta_sq / 1920 * log_FK ** 4

    return float((alpha / (FK_beta * denom_term)) * zeta * bracket)


class SABRVolatilitySurface:
    """
    Named SABR volatility surface with a fixed beta.

    Example:
        >>> surface = SABRVolatilitySurface("EURUSD", alpha=0.2, rho=-0.3, nu=0.4)
        >>> vol = surface.implied_volatility(strike=1.1, maturity=1.0, forward=1.1)
    """

    PARAMETER_NAMES = ("alpha", "rho", "nu")

    def __init__(
        self,
        name: str,
        alpha: float,
        rho: float,
        nu: float,
        beta: float = 0.5,
    ):
        """
        Initialize the surface.

        Args:
            name: Surface name used to look it up in a pricing context
            alpha: Initial volatility (positive)
            rho: Correlation in [-1, 1]
            nu: Vol of vol (non-negative)
            beta: CEV exponent in [0, 1]

        Raises:
            ValueError: If any parameter is outside its domain
        """
        if not 0 <= beta <= 1:
            raise ValueError(f"beta must be in [0, 1], got {beta}")
        if alpha <= 0:
            raise ValueError(f"alpha must be positive, got {alpha}")
        if not -1 <= rho <= 1:
            raise ValueError(f"rho must be in [-1, 1], got {rho}")
        if nu < 0:
            raise ValueError(f"nu must be non-negative, got {nu}")

        self._name = name
        self._beta = beta
        self._parameters = frozen_vector([alpha, rho, nu])

    @property
    def name(self) -> str:
        return self._name

    @property
    def beta(self) -> float:
        return self._beta

    @property
    def alpha(self) -> float:
        return float(self._parameters[0])

    @property
    def rho(self) -> float:
        return float(self._parameters[1])

    @property
    def nu(self) -> float:
        return float(self._parameters[2])

    def get_parameters(self) -> np.ndarray:
        return self._parameters

    def with_parameters(self, parameters: ParameterVector) -> "SABRVolatilitySurface":
        candidate = check_parameters(self._parameters, parameters)
        if np.array_equal(candidate, self._parameters):
            return self
        alpha, rho, nu = candidate
        return SABRVolatilitySurface(
            self._name, alpha=alpha, rho=rho, nu=nu, beta=self._beta
        )

    def implied_volatility(self, strike: float, maturity: float, forward: float) -> float:
        """
        Black implied volatility for a strike and maturity.

        Args:
            strike: Strike price
            maturity: Time to maturity in years
            forward: Forward price for the maturity

        Returns:
            Implied volatility
        """
        return sabr_implied_vol(
            forward, strike, maturity, self.alpha, self._beta, self.rho, self.nu
        )

    @classmethod
    def default_bounds(cls) -> Tuple[np.ndarray, np.ndarray]:
        """Lower and upper bounds for ``[alpha, rho, nu]`` suitable for calibration."""
        lower = np.array([1e-6, -0.999, 0.0])
        upper = np.array([np.inf, 0.999, np.inf])
        return lower, upper

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "alpha": self.alpha,
            "beta": self._beta,
            "rho": self.rho,
            "nu": self.nu,
        }

    def __repr__(self) -> str:
        return (
            f"SABRVolatilitySurface({self._name!r}, α={self.alpha:.4f}, "
            f"β={self._beta:.2f}, ρ={self.rho:.4f}, ν={self.nu:.4f})"
        )
