import logging
from typing import Dict

from contracts.enums import Category
from contracts.market import LiquidityMetrics
from data.market_metrics import liquidity_from_quote
from data.providers.base import MarketDataProvider

logger = logging.getLogger(__name__)


class AlpacaProvider(MarketDataProvider):
    """
    Alpaca market data v2: top-of-book quote and last trade.
    Quote sizes are reported in round lots.
    """

    provider_name = "alpaca"
    categories = frozenset({Category.LIQUIDITY})

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "APCA-API-KEY-ID": self.config.api_key or "",
            "APCA-API-SECRET-KEY": self.config.secret_key or "",
        }

    async def _fetch_liquidity(self, symbol: str) -> LiquidityMetrics:
        symbol = symbol.upper()
        quote = (await self._get_json(f"/v2/stocks/{symbol}/quotes/latest"))["quote"]
        trade = (await self._get_json(f"/v2/stocks/{symbol}/trades/latest")).get("trade") or {}

        return liquidity_from_quote(
            bid=quote.get("bp"),
            ask=quote.get("ap"),
            bid_size=quote.get("bs"),
            ask_size=quote.get("as"),
            last_price=trade.get("p"),
            bands=self.bands,
        )
