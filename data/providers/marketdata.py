import logging
from typing import Any, Dict, Optional

import pandas as pd

from contracts.enums import Category
from contracts.market import LiquidityMetrics, OptionsMetrics, StatsMetrics
from data.market_metrics import liquidity_from_quote, options_metrics_from_chain, stats_from_bars
from data.providers.base import MarketDataProvider

logger = logging.getLogger(__name__)


def _first(values) -> Optional[Any]:
    if isinstance(values, list):
        return values[0] if values else None
    return values


class MarketDataAppProvider(MarketDataProvider):
    """
    MarketData.app: columnar JSON (one array per field, status in 's').
    Serves every category, so it backs up the primary vendors.
    """

    provider_name = "marketdata"
    categories = frozenset({Category.OPTIONS, Category.STATS, Category.LIQUIDITY})

    EXTRA_BARS = 20

    def __init__(self, config, rate_limiter, session=None, bands=None, lookback: int = 20):
        super().__init__(config, rate_limiter, session, bands)
        self.lookback = lookback

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    async def _get_ok(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = await self._get_json(path, params=params)
        if data.get("s") != "ok":
            raise ValueError(f"MarketData.app status '{data.get('s')}': {data.get('errmsg', '')}")
        return data

    async def _bars(self, symbol: str) -> pd.DataFrame:
        data = await self._get_ok(
            f"/v1/stocks/candles/D/{symbol.upper()}/",
            params={"countback": self.lookback + self.EXTRA_BARS},
        )
        df = pd.DataFrame({
            "time": pd.to_datetime(data["t"], unit="s", utc=True),
            "open": data["o"],
            "high": data["h"],
            "low": data["l"],
            "close": data["c"],
            "volume": data["v"],
        }).set_index("time").sort_index()
        return df

    async def _fetch_options(self, symbol: str) -> OptionsMetrics:
        exp = await self._get_ok(f"/v1/options/expirations/{symbol.upper()}/")
        if not exp.get("expirations"):
            raise ValueError(f"no option expirations listed for {symbol}")
        nearest = exp["expirations"][0]

        chain = await self._get_ok(
            f"/v1/options/chain/{symbol.upper()}/",
            params={"expiration": nearest},
        )
        df = pd.DataFrame({
            "side": chain["side"],
            "strike": chain["strike"],
            "volume": chain["volume"],
            "open_interest": chain["openInterest"],
            "iv": chain.get("iv"),
        })
        return options_metrics_from_chain(df, self.bands)

    async def _fetch_stats(self, symbol: str) -> StatsMetrics:
        return stats_from_bars(await self._bars(symbol), lookback=self.lookback)

    async def _fetch_liquidity(self, symbol: str) -> LiquidityMetrics:
        quote = await self._get_ok(f"/v1/stocks/quotes/{symbol.upper()}/")
        bars = await self._bars(symbol)

        volume = _first(quote.get("volume"))
        avg_volume = bars["volume"].tail(self.lookback).mean() if not bars.empty else None
        volume_ratio = None
        if volume is not None and avg_volume:
            volume_ratio = float(volume) / float(avg_volume)

        # Sizes are in shares
        return liquidity_from_quote(
            bid=_first(quote.get("bid")),
            ask=_first(quote.get("ask")),
            bid_size=_first(quote.get("bidSize")),
            ask_size=_first(quote.get("askSize")),
            last_price=_first(quote.get("last")),
            volume_ratio=volume_ratio,
            shares_per_unit=100.0,
            bands=self.bands,
        )
