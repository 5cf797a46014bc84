import asyncio
import logging
from abc import ABC
from typing import Any, Dict, FrozenSet, Optional

import aiohttp

from configs.engine_config import MetricBands, ProviderConfig
from contracts.enums import Category
from contracts.market import Metrics
from data.rate_limiter import SmartRateLimiter
from utils.errors import ProviderErrorKind, ProviderUnavailable

logger = logging.getLogger(__name__)


class MarketDataProvider(ABC):
    """
    Abstract interface for one external market data vendor.

    A provider serves one or more categories. `fetch` is the only entry
    point: it checks the provider is enabled, consumes rate-limit budget and
    classifies every failure as ProviderUnavailable. Subclasses implement
    `_fetch_<category>` and never see the budget or error plumbing.
    """

    # Provider name (override in subclass)
    provider_name = "default"
    categories: FrozenSet[Category] = frozenset()

    def __init__(
        self,
        config: ProviderConfig,
        rate_limiter: SmartRateLimiter,
        session: Optional[aiohttp.ClientSession] = None,
        bands: Optional[MetricBands] = None
    ):
        self.config = config
        self.bands = bands or MetricBands()
        self.rate_limiter = rate_limiter
        self._session = session
        self._owns_session = session is None

    @property
    def disabled(self) -> bool:
        return not self.config.enabled or (bool(self.config.api_key_env) and not self.config.api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=50, keepalive_timeout=60)
            )
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET one JSON document. Every HTTP call spends one unit of budget."""
        if not await self.rate_limiter.try_acquire(self.provider_name):
            raise self._error(ProviderErrorKind.RATE_LIMITED, "request budget exhausted", retryable=True)
        session = await self._get_session()
        url = f"{self.config.base_url.rstrip('/')}{path}"
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        async with session.get(url, params=params, headers=self._headers(), timeout=timeout) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    def _error(self, kind: ProviderErrorKind, message: str, retryable: bool = False) -> ProviderUnavailable:
        return ProviderUnavailable(self.provider_name, kind, message, retryable)

    async def fetch(self, category: Category, symbol: str) -> Metrics:
        if category not in self.categories:
            raise self._error(ProviderErrorKind.DISABLED, f"does not serve {category.value}")
        if self.disabled:
            raise self._error(ProviderErrorKind.DISABLED, "provider disabled or API key missing")
        handler = getattr(self, f"_fetch_{category.value}")
        try:
            return await handler(symbol)
        except ProviderUnavailable:
            raise
        except asyncio.TimeoutError as e:
            raise self._error(ProviderErrorKind.TIMEOUT, f"{category.value} request timed out", True) from e
        except aiohttp.ClientResponseError as e:
            if e.status == 429:
                raise self._error(ProviderErrorKind.RATE_LIMITED, "HTTP 429 from upstream", True) from e
            raise self._error(ProviderErrorKind.API_ERROR, f"HTTP {e.status}: {e.message}", e.status >= 500) from e
        except aiohttp.ClientError as e:
            raise self._error(ProviderErrorKind.NETWORK_ERROR, str(e) or type(e).__name__, True) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise self._error(ProviderErrorKind.INVALID_RESPONSE, f"{type(e).__name__}: {e}") from e
