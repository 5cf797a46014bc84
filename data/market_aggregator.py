"""
Market Data Aggregator.

Builds a MarketSnapshot by fetching the options, stats and liquidity
categories concurrently. Each category:
- is served from cache while within its TTL,
- otherwise walks its ordered provider chain until one succeeds,
- is bounded by its own timeout.

A category that cannot be served is reported unavailable with the reasons.
No neutral values are ever substituted; gates treat missing as failed.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from configs.engine_config import MarketDataConfig
from contracts.enums import Category
from contracts.market import CategoryResult, MarketSnapshot
from core.state_store import StateStore
from data.cache.market_cache import MarketDataCache
from data.providers import build_providers
from data.providers.base import MarketDataProvider
from data.rate_limiter import ProviderLimit, SmartRateLimiter
from utils.errors import ProviderUnavailable
from utils.time import Clock, get_now_utc

logger = logging.getLogger("MARKET_AGGREGATOR")


class MarketDataAggregator:

    def __init__(
        self,
        config: MarketDataConfig,
        providers: Dict[str, MarketDataProvider],
        cache: Optional[MarketDataCache] = None,
        clock: Clock = get_now_utc
    ):
        self.config = config
        self.providers = providers
        self.cache = cache or MarketDataCache(config.cache_ttl_seconds, clock=clock)
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: MarketDataConfig,
        state_store: Optional[StateStore] = None,
        clock: Clock = get_now_utc
    ) -> "MarketDataAggregator":
        limits = {
            name: ProviderLimit(p.requests_per_minute, p.requests_per_day)
            for name, p in config.providers.items()
        }
        limiter = SmartRateLimiter(limits, state_store=state_store, clock=clock)
        return cls(config, build_providers(config, limiter), clock=clock)

    async def build_snapshot(self, symbol: str) -> MarketSnapshot:
        symbol = symbol.strip().upper()
        categories = list(Category)
        results = await asyncio.gather(
            *(self._fetch_category(c, symbol) for c in categories),
            return_exceptions=True
        )

        by_category: Dict[Category, CategoryResult] = {}
        for category, res in zip(categories, results):
            if isinstance(res, BaseException):
                logger.error(f"{symbol}: {category.value} fetch raised {type(res).__name__}: {res}")
                res = CategoryResult.unavailable(
                    category, (f"{category.value}: unexpected {type(res).__name__}: {res}",)
                )
            by_category[category] = res

        snapshot = MarketSnapshot(
            symbol=symbol,
            options=by_category[Category.OPTIONS],
            stats=by_category[Category.STATS],
            liquidity=by_category[Category.LIQUIDITY],
            fetched_at=self._clock(),
        )
        if snapshot.completeness < 1.0:
            logger.warning(
                f"{symbol}: snapshot completeness {snapshot.completeness:.2f}, "
                f"errors={list(snapshot.errors)}"
            )
        return snapshot

    async def _fetch_category(self, category: Category, symbol: str) -> CategoryResult:
        cached = self.cache.get(category, symbol)
        if cached is not None:
            return CategoryResult(
                category=category,
                available=True,
                data=cached.data,
                provider=cached.provider,
                cached=True,
                fetched_at=cached.stored_at,
            )

        errors: List[str] = []
        timeout = self.config.category_timeout_seconds
        try:
            return await asyncio.wait_for(self._walk_chain(category, symbol, errors), timeout=timeout)
        except asyncio.TimeoutError:
            errors.append(f"{category.value}: TIMEOUT after {timeout}s")
            logger.warning(f"{symbol}: {category.value} timed out after {timeout}s")
            return CategoryResult.unavailable(category, tuple(errors))

    async def _walk_chain(self, category: Category, symbol: str, errors: List[str]) -> CategoryResult:
        for name in self.config.chains[category]:
            provider = self.providers.get(name)
            if provider is None:
                errors.append(f"{category.value}: {name} not configured")
                continue
            try:
                data = await provider.fetch(category, symbol)
            except ProviderUnavailable as e:
                errors.append(f"{category.value}: {e}")
                logger.warning(f"{symbol}: {e}")
                continue

            entry = self.cache.set(category, symbol, data, name)
            return CategoryResult(
                category=category,
                available=True,
                data=data,
                provider=name,
                errors=tuple(errors),
                fetched_at=entry.stored_at,
            )
        return CategoryResult.unavailable(category, tuple(errors))

    async def latest_price(self, symbol: str) -> Optional[float]:
        """Current underlying price from the liquidity category, or None."""
        result = await self._fetch_category(Category.LIQUIDITY, symbol.strip().upper())
        if not result.available or result.data is None:
            return None
        return result.data.mid if result.data.mid is not None else result.data.last_price

    async def latest_iv_percentile(self, symbol: str) -> Optional[float]:
        """Current IV percentile from the options category, or None."""
        result = await self._fetch_category(Category.OPTIONS, symbol.strip().upper())
        if not result.available or result.data is None:
            return None
        return result.data.iv_percentile

    async def close(self):
        for provider in self.providers.values():
            await provider.close()
