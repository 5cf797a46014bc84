"""
Black-Scholes Pricing and Greeks
================================

Deterministic analytic pricing for the paper executor and exit simulator.

Conventions:
- T in years, sigma annualized
- theta per calendar day
- vega per one volatility point (1%)
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.stats import norm

from configs.engine_config import PricingConfig
from contracts.enums import DteBucket, OptionType
from contracts.records import Greeks

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.0


class BlackScholesModel:
    """Black-Scholes option pricing and Greeks (no dividends)."""

    @staticmethod
    def d1(S: float, K: float, T: float, r: float, sigma: float) -> float:
        """Calculate d1 parameter."""
        return (np.log(S / K) + (r + 0.5 * sigma**2) * T) / (sigma * np.sqrt(T))

    @staticmethod
    def d2(S: float, K: float, T: float, r: float, sigma: float) -> float:
        """Calculate d2 parameter."""
        return BlackScholesModel.d1(S, K, T, r, sigma) - sigma * np.sqrt(T)

    @staticmethod
    def price(S: float, K: float, T: float, r: float, sigma: float, option_type: OptionType) -> float:
        d1 = BlackScholesModel.d1(S, K, T, r, sigma)
        d2 = BlackScholesModel.d2(S, K, T, r, sigma)

        if option_type == OptionType.CALL:
            return S * norm.cdf(d1) - K * np.exp(-r * T) * norm.cdf(d2)
        return K * np.exp(-r * T) * norm.cdf(-d2) - S * norm.cdf(-d1)

    @staticmethod
    def greeks(S: float, K: float, T: float, r: float, sigma: float, option_type: OptionType) -> Greeks:
        d1 = BlackScholesModel.d1(S, K, T, r, sigma)
        d2 = d1 - sigma * np.sqrt(T)
        pdf_d1 = norm.pdf(d1)
        discount = np.exp(-r * T)

        gamma = pdf_d1 / (S * sigma * np.sqrt(T))
        vega = S * pdf_d1 * np.sqrt(T) / 100.0
        common_theta = -(S * pdf_d1 * sigma) / (2.0 * np.sqrt(T))

        if option_type == OptionType.CALL:
            delta = norm.cdf(d1)
            theta = common_theta - r * K * discount * norm.cdf(d2)
        else:
            delta = norm.cdf(d1) - 1.0
            theta = common_theta + r * K * discount * norm.cdf(-d2)

        return Greeks(
            delta=float(delta),
            gamma=float(gamma),
            theta=float(theta / DAYS_PER_YEAR),
            vega=float(vega),
            iv=float(sigma),
        )


@dataclass(frozen=True)
class PricingResult:
    price: float
    greeks: Greeks
    fallback_used: bool


class OptionPricer:
    """
    Prices simulated contracts from config.

    When inputs are insufficient or the model output is not usable, returns
    fixed conservative estimates and flags `fallback_used`.
    """

    def __init__(self, config: PricingConfig):
        self.config = config

    def estimate_iv(self, bucket: DteBucket, iv_percentile: Optional[float]) -> Optional[float]:
        """Base IV for the expiry bucket scaled by IV percentile (0-100)."""
        if iv_percentile is None:
            return None
        return self.config.base_iv[bucket] * (0.5 + iv_percentile / 100.0)

    def time_to_expiry(self, days: float) -> float:
        return max(days / DAYS_PER_YEAR, self.config.min_time_years)

    def value(
        self,
        S: Optional[float],
        K: float,
        days_to_expiry: float,
        option_type: OptionType,
        iv: Optional[float]
    ) -> PricingResult:
        if S is None or not np.isfinite(S) or S <= 0:
            raise ValueError("underlying price is required for pricing")

        if iv is None or not np.isfinite(iv) or iv <= 0:
            logger.warning(f"IV unavailable, pricing {option_type.value} K={K} with fallback estimates")
            return self.fallback(S, option_type)

        T = self.time_to_expiry(days_to_expiry)
        r = self.config.risk_free_rate
        price = BlackScholesModel.price(S, K, T, r, iv, option_type)
        greeks = BlackScholesModel.greeks(S, K, T, r, iv, option_type)

        values = (price, greeks.delta, greeks.gamma, greeks.theta, greeks.vega)
        if not all(np.isfinite(v) for v in values):
            logger.warning(f"Non-finite Black-Scholes output for K={K} T={T:.5f}, using fallback estimates")
            return self.fallback(S, option_type)

        return PricingResult(
            price=max(float(price), self.config.min_premium),
            greeks=greeks,
            fallback_used=False,
        )

    def taylor_value(self, entry_price: float, greeks: Greeks, underlying_move: float, days: float) -> float:
        """Second-order Greek approximation, for positions opened on fallback estimates."""
        price = (
            entry_price
            + greeks.delta * underlying_move
            + 0.5 * greeks.gamma * underlying_move ** 2
            + greeks.theta * days
        )
        return max(float(price), self.config.min_premium)

    def fallback(self, S: float, option_type: OptionType) -> PricingResult:
        c = self.config
        sign = 1.0 if option_type == OptionType.CALL else -1.0
        return PricingResult(
            price=max(S * c.fallback_premium_pct, c.min_premium),
            greeks=Greeks(
                delta=sign * c.fallback_delta,
                gamma=c.fallback_gamma,
                theta=c.fallback_theta,
                vega=c.fallback_vega,
                iv=c.fallback_iv,
            ),
            fallback_used=True,
        )
