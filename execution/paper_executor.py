"""
execution/paper_executor.py

Turns an EXECUTE decision into a simulated option position.
Selection, pricing and fills are deterministic given the packet and config.
"""

import logging
from typing import Optional

from configs.engine_config import EngineConfig
from contracts.decision import DecisionPacket, content_hash
from contracts.enums import Action, Direction
from contracts.records import ExecutionRecord
from derivatives.black_scholes import OptionPricer
from execution.contract_selector import select_contract
from execution.fill_simulator import CONTRACT_MULTIPLIER, FillSimulator

logger = logging.getLogger("PAPER_EXEC")


def underlying_price(packet: DecisionPacket) -> Optional[float]:
    """Context price, then liquidity mid or last trade, then last close."""
    if packet.context.price is not None:
        return packet.context.price
    liquidity = packet.snapshot.liquidity_data
    if liquidity is not None:
        if liquidity.mid is not None:
            return liquidity.mid
        if liquidity.last_price is not None:
            return liquidity.last_price
    stats = packet.snapshot.stats_data
    if stats is not None and stats.last_close is not None:
        return stats.last_close
    return None


def price_levels(entry: float, direction: Direction, stop_pct: float, t1_pct: float, t2_pct: float):
    """(stop, target_1, target_2) on the underlying."""
    sign = 1.0 if direction == Direction.LONG else -1.0
    return (
        round(entry * (1.0 - sign * stop_pct), 4),
        round(entry * (1.0 + sign * t1_pct), 4),
        round(entry * (1.0 + sign * t2_pct), 4),
    )


class PaperExecutor:

    def __init__(self, config: EngineConfig):
        self.config = config
        self.pricer = OptionPricer(config.pricing)
        self.fills = FillSimulator(config.fills)

    def contracts_for(self, size_multiplier: float) -> int:
        return max(1, int(round(self.config.execution.base_contracts * size_multiplier)))

    def open(self, packet: DecisionPacket) -> ExecutionRecord:
        if packet.action != Action.EXECUTE:
            raise ValueError(f"decision {packet.decision_id[:12]} is {packet.action.value}, not EXECUTE")

        spot = underlying_price(packet)
        if spot is None:
            raise ValueError(f"no underlying price available for {packet.symbol}")

        contract = select_contract(
            packet.direction,
            packet.context.expert.timeframe_minutes,
            spot,
            packet.timestamp,
            self.config.execution,
        )

        options = packet.snapshot.options_data
        iv_percentile = options.iv_percentile if options is not None else None
        iv = self.pricer.estimate_iv(contract.dte_bucket, iv_percentile)
        pricing = self.pricer.value(spot, contract.strike, contract.dte, contract.option_type, iv)

        requested = self.contracts_for(packet.size_multiplier)
        fill = self.fills.simulate_entry(packet.decision_id, pricing.price, requested, contract.dte_bucket)

        exits = self.config.exits
        stop, target_1, target_2 = price_levels(
            spot, packet.direction, exits.stop_loss_pct, exits.target_1_pct, exits.target_2_pct
        )

        record = ExecutionRecord(
            execution_id=content_hash({"decision_id": packet.decision_id, "kind": "execution"}),
            decision_id=packet.decision_id,
            symbol=packet.symbol,
            direction=packet.direction,
            option_type=contract.option_type,
            strike=contract.strike,
            expiry=contract.expiry,
            dte=contract.dte,
            dte_bucket=contract.dte_bucket,
            contracts_requested=requested,
            filled_contracts=fill.filled_contracts,
            fill_quality=fill.fill_quality,
            entry_price=round(fill.price, 4),
            theoretical_price=round(pricing.price, 4),
            underlying_at_entry=spot,
            entry_greeks=pricing.greeks,
            pricing_fallback_used=pricing.fallback_used,
            spread_cost=round(fill.spread_cost, 2),
            slippage_cost=round(fill.slippage_cost, 2),
            commission=round(fill.commission, 2),
            risk_amount=round(fill.price * fill.filled_contracts * CONTRACT_MULTIPLIER, 2),
            stop_loss=stop,
            target_1=target_1,
            target_2=target_2,
            opened_at=packet.timestamp,
        )

        logger.info(
            f"Opened {record.symbol} {record.filled_contracts}x {record.option_type.value} "
            f"{record.strike} exp {record.expiry} ({record.dte_bucket.value}) @ {record.entry_price}"
            + (" [fallback pricing]" if record.pricing_fallback_used else "")
        )
        return record
