"""
execution/fill_simulator.py

Option fill realism for paper trading.
Simulates bid/ask spread by expiry bucket, size-scaled slippage and partial fills.
Randomness is drawn from a generator seeded per order, so replays are exact.
"""

import hashlib
import logging
from dataclasses import dataclass

import numpy as np

from configs.engine_config import FillConfig
from contracts.enums import DteBucket, FillQuality

logger = logging.getLogger("EXEC_SIM")

CONTRACT_MULTIPLIER = 100
MIN_OPTION_PRICE = 0.01


@dataclass(frozen=True)
class OptionFill:
    theoretical_price: float
    bid: float
    ask: float
    spread_pct: float
    price: float
    slippage: float
    contracts_requested: int
    filled_contracts: int
    fill_quality: FillQuality
    commission: float

    @property
    def spread_cost(self) -> float:
        """Half-spread paid versus mid, in dollars."""
        half_spread = (self.ask - self.bid) / 2.0
        return half_spread * self.filled_contracts * CONTRACT_MULTIPLIER

    @property
    def slippage_cost(self) -> float:
        return self.slippage * self.filled_contracts * CONTRACT_MULTIPLIER


def order_seed(base_seed: int, order_key: str) -> int:
    """Combine the configured seed with a stable order key."""
    digest = hashlib.sha256(order_key.encode("utf-8")).digest()
    return base_seed ^ int.from_bytes(digest[:8], "big")


class FillSimulator:
    def __init__(self, config: FillConfig):
        self.config = config

    def _rng(self, order_key: str) -> np.random.Generator:
        return np.random.default_rng(order_seed(self.config.fill_seed, order_key))

    def _quote(self, theoretical: float, bucket: DteBucket, rng: np.random.Generator):
        low, high = self.config.spread_pct[bucket]
        spread_pct = float(rng.uniform(low, high)) if high > low else low
        half = theoretical * spread_pct / 2.0
        bid = max(MIN_OPTION_PRICE, theoretical - half)
        ask = theoretical + half
        return bid, ask, spread_pct

    def _slippage_pct(self, contracts: int, rng: np.random.Generator) -> float:
        c = self.config
        size_factor = min(1.0, contracts / c.slippage_size_scale)
        ceiling = c.slippage_min_pct + (c.slippage_max_pct - c.slippage_min_pct) * size_factor
        if ceiling <= c.slippage_min_pct:
            return c.slippage_min_pct
        return float(rng.uniform(c.slippage_min_pct, ceiling))

    def _fill_quantity(self, contracts: int):
        c = self.config
        if contracts <= c.partial_fill_threshold:
            return FillQuality.FULL, contracts
        filled = max(1, int(round(contracts * c.partial_fill_ratio)))
        return FillQuality.PARTIAL, filled

    def simulate_entry(
        self,
        order_key: str,
        theoretical_price: float,
        contracts: int,
        bucket: DteBucket
    ) -> OptionFill:
        """Buy to open: pay the ask plus slippage."""
        if contracts < 1:
            raise ValueError(f"contracts must be >= 1, got {contracts}")

        rng = self._rng(order_key)
        bid, ask, spread_pct = self._quote(theoretical_price, bucket, rng)
        slippage = ask * self._slippage_pct(contracts, rng)
        fill_quality, filled = self._fill_quantity(contracts)

        fill = OptionFill(
            theoretical_price=theoretical_price,
            bid=bid,
            ask=ask,
            spread_pct=spread_pct,
            price=ask + slippage,
            slippage=slippage,
            contracts_requested=contracts,
            filled_contracts=filled,
            fill_quality=fill_quality,
            commission=filled * self.config.commission_per_contract,
        )
        logger.info(
            f"Entry fill {order_key[:12]}: {filled}/{contracts} @ {fill.price:.4f} "
            f"(theo {theoretical_price:.4f}, spread {spread_pct:.2%}, {fill_quality.value})"
        )
        return fill

    def simulate_exit(
        self,
        order_key: str,
        theoretical_price: float,
        contracts: int,
        bucket: DteBucket
    ) -> OptionFill:
        """Sell to close the whole position: receive the bid less slippage."""
        if contracts < 1:
            raise ValueError(f"contracts must be >= 1, got {contracts}")

        rng = self._rng(order_key)
        bid, ask, spread_pct = self._quote(theoretical_price, bucket, rng)
        slippage = min(bid * self._slippage_pct(contracts, rng), bid - MIN_OPTION_PRICE)
        slippage = max(0.0, slippage)

        fill = OptionFill(
            theoretical_price=theoretical_price,
            bid=bid,
            ask=ask,
            spread_pct=spread_pct,
            price=bid - slippage,
            slippage=slippage,
            contracts_requested=contracts,
            filled_contracts=contracts,
            fill_quality=FillQuality.FULL,
            commission=contracts * self.config.commission_per_contract,
        )
        logger.info(f"Exit fill {order_key[:12]}: {contracts} @ {fill.price:.4f} (theo {theoretical_price:.4f})")
        return fill
