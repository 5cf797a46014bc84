"""
Derivatives Module
==================

Option pricing for simulated paper positions.

Modules:
- black_scholes: Black-Scholes price, Greeks and config-driven fallback estimates
"""

from derivatives.black_scholes import BlackScholesModel, OptionPricer, PricingResult

__all__ = [
    "BlackScholesModel",
    "OptionPricer",
    "PricingResult",
]
