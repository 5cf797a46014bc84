import logging

import pandas as pd

from contracts.enums import Category
from contracts.market import StatsMetrics
from data.market_metrics import stats_from_bars
from data.providers.base import MarketDataProvider

logger = logging.getLogger(__name__)


class TwelveDataProvider(MarketDataProvider):
    """
    TwelveData Data Provider.
    Requires API key. Free tier has 8 calls/minute, so stats are derived
    from a single daily time_series request.
    """

    provider_name = "twelvedata"
    categories = frozenset({Category.STATS})

    # Enough history for a full ATR window over the lookback
    EXTRA_BARS = 20

    def __init__(self, config, rate_limiter, session=None, bands=None, lookback: int = 20):
        super().__init__(config, rate_limiter, session, bands)
        self.lookback = lookback

    async def _fetch_stats(self, symbol: str) -> StatsMetrics:
        data = await self._get_json(
            "/time_series",
            params={
                "symbol": symbol.upper(),
                "interval": "1day",
                "outputsize": self.lookback + self.EXTRA_BARS,
                "apikey": self.config.api_key,
            },
        )
        if data.get("status") != "ok" or "values" not in data:
            raise ValueError(f"TwelveData error: {data.get('message', 'no values')}")

        df = pd.DataFrame(data["values"])
        df["datetime"] = pd.to_datetime(df["datetime"])
        df.set_index("datetime", inplace=True)
        df.sort_index(inplace=True)
        for col in ("open", "high", "low", "close", "volume"):
            df[col] = pd.to_numeric(df[col], errors="coerce")

        return stats_from_bars(df, lookback=self.lookback)
