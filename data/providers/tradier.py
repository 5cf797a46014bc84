import logging
from typing import Dict

import pandas as pd

from contracts.enums import Category
from contracts.market import OptionsMetrics
from data.market_metrics import options_metrics_from_chain
from data.providers.base import MarketDataProvider

logger = logging.getLogger(__name__)


def _as_list(node):
    if node is None:
        return []
    return node if isinstance(node, list) else [node]


class TradierProvider(MarketDataProvider):
    """
    Tradier brokerage market data: options chains with Greeks.
    Uses the nearest listed expiration.
    """

    provider_name = "tradier"
    categories = frozenset({Category.OPTIONS})

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    async def _fetch_options(self, symbol: str) -> OptionsMetrics:
        exp = await self._get_json(
            "/v1/markets/options/expirations",
            params={"symbol": symbol, "includeAllRoots": "true"},
        )
        dates = _as_list((exp.get("expirations") or {}).get("date"))
        if not dates:
            raise ValueError(f"no option expirations listed for {symbol}")

        data = await self._get_json(
            "/v1/markets/options/chains",
            params={"symbol": symbol, "expiration": dates[0], "greeks": "true"},
        )
        options = _as_list((data.get("options") or {}).get("option"))
        rows = [
            {
                "side": o["option_type"],
                "strike": o["strike"],
                "volume": o.get("volume"),
                "open_interest": o.get("open_interest"),
                "iv": (o.get("greeks") or {}).get("mid_iv"),
            }
            for o in options
        ]
        metrics = options_metrics_from_chain(pd.DataFrame(rows), self.bands)
        logger.debug(f"Tradier {symbol} {dates[0]}: {len(rows)} contracts, pcr={metrics.put_call_ratio}")
        return metrics
