"""
Market snapshot contracts.

Every metric is Optional: None means the provider did not supply it, while
0.0 is a real observation. Consumers must never conflate the two.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from contracts.enums import Category, GammaBias, TradeVelocity


@dataclass(frozen=True)
class OptionsMetrics:
    put_call_ratio: Optional[float] = None
    iv_percentile: Optional[float] = None
    gamma_bias: Optional[GammaBias] = None
    option_volume: Optional[float] = None
    max_pain: Optional[float] = None
    # Volume-weighted chain IV, annualized decimal
    implied_vol: Optional[float] = None


@dataclass(frozen=True)
class StatsMetrics:
    atr14: Optional[float] = None
    rv20: Optional[float] = None
    trend_slope: Optional[float] = None
    rsi: Optional[float] = None
    volume: Optional[float] = None
    volume_ratio: Optional[float] = None
    volatility_spike_ratio: Optional[float] = None
    last_close: Optional[float] = None


@dataclass(frozen=True)
class LiquidityMetrics:
    spread_bps: Optional[float] = None
    depth_score: Optional[float] = None
    trade_velocity: Optional[TradeVelocity] = None
    bid: Optional[float] = None
    ask: Optional[float] = None
    bid_size: Optional[float] = None
    ask_size: Optional[float] = None
    last_price: Optional[float] = None

    @property
    def mid(self) -> Optional[float]:
        if self.bid is not None and self.ask is not None and self.bid > 0 and self.ask > 0:
            return (self.bid + self.ask) / 2.0
        return None


Metrics = Union[OptionsMetrics, StatsMetrics, LiquidityMetrics]


@dataclass(frozen=True)
class CategoryResult:
    """Outcome of fetching one data category."""
    category: Category
    available: bool
    data: Optional[Metrics] = None
    provider: Optional[str] = None
    errors: Tuple[str, ...] = ()
    cached: bool = False
    fetched_at: Optional[datetime] = None

    @classmethod
    def unavailable(cls, category: Category, errors: Tuple[str, ...]) -> "CategoryResult":
        return cls(category=category, available=False, errors=tuple(errors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "available": self.available,
            "data": _metrics_dict(self.data),
            "provider": self.provider,
            "errors": list(self.errors),
            "cached": self.cached,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
        }


@dataclass(frozen=True)
class MarketSnapshot:
    symbol: str
    options: CategoryResult
    stats: CategoryResult
    liquidity: CategoryResult
    fetched_at: datetime

    @property
    def categories(self) -> Tuple[CategoryResult, ...]:
        return (self.options, self.stats, self.liquidity)

    @property
    def completeness(self) -> float:
        """Fraction of categories available."""
        cats = self.categories
        return sum(1 for c in cats if c.available) / len(cats)

    @property
    def errors(self) -> Tuple[str, ...]:
        return tuple(e for c in self.categories for e in c.errors)

    # Accessors return None for an unavailable category
    @property
    def options_data(self) -> Optional[OptionsMetrics]:
        return self.options.data if self.options.available else None

    @property
    def stats_data(self) -> Optional[StatsMetrics]:
        return self.stats.data if self.stats.available else None

    @property
    def liquidity_data(self) -> Optional[LiquidityMetrics]:
        return self.liquidity.data if self.liquidity.available else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "options": self.options.to_dict(),
            "stats": self.stats.to_dict(),
            "liquidity": self.liquidity.to_dict(),
            "completeness": round(self.completeness, 4),
            "errors": list(self.errors),
            "fetched_at": self.fetched_at.isoformat(),
        }


def _metrics_dict(data: Optional[Metrics]) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    out = {}
    for k, v in asdict(data).items():
        out[k] = v.value if hasattr(v, "value") else v
    return out
