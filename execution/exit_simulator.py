"""
execution/exit_simulator.py

Periodic exit evaluation for open paper positions.

Each cycle reads open positions from the ledger and evaluates them
concurrently, each under its own timeout. A cycle never overlaps a running
one. Positions are closed on the first trigger in priority order:
TARGET_2, TARGET_1, STOP_LOSS, THETA_DECAY, MAX_HOLD.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from audit.ledger import Ledger
from configs.engine_config import EngineConfig
from contracts.enums import Direction, ExitReason
from contracts.records import ExecutionRecord, ExitRecord, TradeCosts
from derivatives.black_scholes import OptionPricer, PricingResult
from execution.fill_simulator import CONTRACT_MULTIPLIER, FillSimulator
from risk.pnl_attribution import PnLAttribution
from utils.errors import LedgerError
from utils.time import Clock, get_now_utc

logger = logging.getLogger("EXIT_SIM")

PriceSource = Callable[[str], Awaitable[Optional[float]]]
# Current IV percentile of the symbol's options, or None when unavailable
IvSource = Callable[[str], Awaitable[Optional[float]]]

SECONDS_PER_DAY = 86400.0


@dataclass
class ExitCycleResult:
    started_at: datetime
    skipped: bool = False
    evaluated: int = 0
    exits: List[ExitRecord] = field(default_factory=list)
    held: List[str] = field(default_factory=list)
    no_price: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {
            "started_at": self.started_at.isoformat(),
            "skipped": self.skipped,
            "evaluated": self.evaluated,
            "exits": [e.to_dict() for e in self.exits],
            "held": self.held,
            "no_price": self.no_price,
            "timed_out": self.timed_out,
            "errors": self.errors,
        }


def price_trigger(record: ExecutionRecord, underlying: float) -> Optional[ExitReason]:
    """Target and stop checks on the underlying, mirrored for SHORT."""
    if record.direction == Direction.LONG:
        if underlying >= record.target_2:
            return ExitReason.TARGET_2
        if underlying >= record.target_1:
            return ExitReason.TARGET_1
        if underlying <= record.stop_loss:
            return ExitReason.STOP_LOSS
    else:
        if underlying <= record.target_2:
            return ExitReason.TARGET_2
        if underlying <= record.target_1:
            return ExitReason.TARGET_1
        if underlying >= record.stop_loss:
            return ExitReason.STOP_LOSS
    return None


class ExitSimulator:

    def __init__(
        self,
        config: EngineConfig,
        ledger: Ledger,
        price_source: PriceSource,
        clock: Clock = get_now_utc,
        iv_source: Optional[IvSource] = None
    ):
        self.config = config
        self.ledger = ledger
        self.price_source = price_source
        self.iv_source = iv_source
        self.clock = clock
        self.pricer = OptionPricer(config.pricing)
        self.fills = FillSimulator(config.fills)
        self.attribution = PnLAttribution()
        self._running = False
        self.cycles_run = 0
        self.cycles_skipped = 0

    @property
    def running(self) -> bool:
        return self._running

    async def evaluate_open_positions(self) -> ExitCycleResult:
        now = self.clock()
        result = ExitCycleResult(started_at=now)

        if self._running:
            self.cycles_skipped += 1
            logger.warning("Exit cycle still running, skipping this one")
            result.skipped = True
            return result

        self._running = True
        try:
            positions = self.ledger.open_positions()
            result.evaluated = len(positions)
            if not positions:
                return result

            timeout = self.config.exits.position_timeout_seconds
            outcomes = await asyncio.gather(
                *[asyncio.wait_for(self._evaluate(p, now), timeout) for p in positions],
                return_exceptions=True
            )

            for position, outcome in zip(positions, outcomes):
                self._collect(result, position, outcome)
        finally:
            self._running = False
            self.cycles_run += 1

        logger.info(
            f"Exit cycle: {result.evaluated} open, {len(result.exits)} closed, "
            f"{len(result.no_price)} without price, {len(result.timed_out)} timed out"
        )
        return result

    def _collect(self, result: ExitCycleResult, position: ExecutionRecord, outcome) -> None:
        eid = position.execution_id
        if isinstance(outcome, asyncio.TimeoutError):
            logger.warning(f"Exit evaluation timed out for {eid[:12]} ({position.symbol})")
            result.timed_out.append(eid)
        elif isinstance(outcome, LedgerError):
            logger.warning(f"Exit for {eid[:12]} not recorded: {outcome}")
            result.errors[eid] = str(outcome)
        elif isinstance(outcome, Exception):
            logger.error(f"Exit evaluation failed for {eid[:12]}: {outcome}")
            result.errors[eid] = f"{type(outcome).__name__}: {outcome}"
        elif outcome == "no_price":
            result.no_price.append(eid)
        elif outcome is None:
            result.held.append(eid)
        else:
            result.exits.append(outcome)

    async def _evaluate(self, position: ExecutionRecord, now: datetime):
        underlying = await self.price_source(position.symbol)
        if underlying is None:
            logger.info(f"No underlying price for {position.symbol}, {position.execution_id[:12]} held")
            return "no_price"

        hold_seconds = max(0.0, (now - position.opened_at).total_seconds())
        exit_iv = await self.exit_iv(position)
        mark = self.revalue(position, underlying, hold_seconds, exit_iv)
        reason = self.check_triggers(position, underlying, mark.price, hold_seconds)
        if reason is None:
            return None

        record = self.build_exit(position, underlying, mark, reason, now, hold_seconds)
        self.ledger.append_exit(record)
        return record

    async def exit_iv(self, position: ExecutionRecord) -> float:
        """IV re-estimated from the live options category; entry IV when it cannot be."""
        entry_iv = position.entry_greeks.iv
        if self.iv_source is None or position.pricing_fallback_used:
            return entry_iv
        iv = self.pricer.estimate_iv(position.dte_bucket, await self.iv_source(position.symbol))
        if iv is None:
            logger.debug(f"No live IV for {position.symbol}, {position.execution_id[:12]} keeps entry IV {entry_iv}")
            return entry_iv
        return iv

    def revalue(
        self,
        position: ExecutionRecord,
        underlying: float,
        hold_seconds: float,
        exit_iv: Optional[float] = None
    ) -> PricingResult:
        days_held = hold_seconds / SECONDS_PER_DAY
        if position.pricing_fallback_used:
            price = self.pricer.taylor_value(
                position.theoretical_price,
                position.entry_greeks,
                underlying - position.underlying_at_entry,
                days_held,
            )
            return PricingResult(price=price, greeks=position.entry_greeks, fallback_used=True)

        remaining_days = max(0.0, position.dte - days_held)
        return self.pricer.value(
            underlying,
            position.strike,
            remaining_days,
            position.option_type,
            exit_iv if exit_iv is not None else position.entry_greeks.iv,
        )

    def check_triggers(
        self,
        position: ExecutionRecord,
        underlying: float,
        mark: float,
        hold_seconds: float
    ) -> Optional[ExitReason]:
        exits = self.config.exits
        reason = price_trigger(position, underlying)
        if reason is not None:
            return reason
        if mark <= position.entry_price * (1.0 - exits.theta_decay_threshold):
            return ExitReason.THETA_DECAY
        if hold_seconds >= exits.max_hold_minutes[position.dte_bucket] * 60:
            return ExitReason.MAX_HOLD
        return None

    def build_exit(
        self,
        position: ExecutionRecord,
        underlying: float,
        mark: PricingResult,
        reason: ExitReason,
        now: datetime,
        hold_seconds: float
    ) -> ExitRecord:
        contracts = position.filled_contracts
        fill = self.fills.simulate_exit(
            f"{position.execution_id}:exit", mark.price, contracts, position.dte_bucket
        )

        gross = (mark.price - position.theoretical_price) * contracts * CONTRACT_MULTIPLIER
        costs = TradeCosts(
            commission=round(position.commission + fill.commission, 2),
            spread=round(position.spread_cost + fill.spread_cost, 2),
            slippage=round(position.slippage_cost + fill.slippage_cost, 2),
        )
        net = gross - costs.total

        attribution = self.attribution.attribute(
            gross_pnl=gross,
            entry_greeks=position.entry_greeks,
            exit_greeks=mark.greeks,
            underlying_move=underlying - position.underlying_at_entry,
            days_held=hold_seconds / SECONDS_PER_DAY,
            contracts=contracts,
        )

        record = ExitRecord(
            execution_id=position.execution_id,
            exit_time=now,
            exit_price=round(fill.price, 4),
            exit_theoretical_price=round(mark.price, 4),
            underlying_at_exit=underlying,
            exit_reason=reason,
            exit_greeks=mark.greeks,
            pnl_gross=gross,
            pnl_net=net,
            hold_time_seconds=hold_seconds,
            attribution=attribution,
            costs=costs,
            r_multiple=net / position.risk_amount if position.risk_amount > 0 else 0.0,
        )
        logger.info(
            f"EXIT {position.symbol} {position.execution_id[:12]} {reason.value}: "
            f"underlying {position.underlying_at_entry} -> {underlying}, "
            f"gross={gross:.2f} net={net:.2f} R={record.r_multiple:.2f}"
        )
        return record
