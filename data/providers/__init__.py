"""
Market data provider registry.
"""

from typing import Dict, Optional, Type

import aiohttp

from configs.engine_config import MarketDataConfig
from data.providers.alpaca import AlpacaProvider
from data.providers.base import MarketDataProvider
from data.providers.marketdata import MarketDataAppProvider
from data.providers.tradier import TradierProvider
from data.providers.twelvedata import TwelveDataProvider
from data.rate_limiter import SmartRateLimiter

PROVIDER_CLASSES: Dict[str, Type[MarketDataProvider]] = {
    TradierProvider.provider_name: TradierProvider,
    TwelveDataProvider.provider_name: TwelveDataProvider,
    AlpacaProvider.provider_name: AlpacaProvider,
    MarketDataAppProvider.provider_name: MarketDataAppProvider,
}


def build_providers(
    config: MarketDataConfig,
    rate_limiter: SmartRateLimiter,
    session: Optional[aiohttp.ClientSession] = None
) -> Dict[str, MarketDataProvider]:
    """Instantiate every configured provider that has an implementation."""
    providers = {}
    for name, pconf in config.providers.items():
        cls = PROVIDER_CLASSES.get(name)
        if cls is None:
            raise KeyError(f"no provider implementation named '{name}'")
        if cls in (TwelveDataProvider, MarketDataAppProvider):
            providers[name] = cls(pconf, rate_limiter, session, config.metrics, lookback=config.stats_lookback)
        else:
            providers[name] = cls(pconf, rate_limiter, session, config.metrics)
    return providers


__all__ = [
    "MarketDataProvider",
    "TradierProvider",
    "TwelveDataProvider",
    "AlpacaProvider",
    "MarketDataAppProvider",
    "PROVIDER_CLASSES",
    "build_providers",
]
