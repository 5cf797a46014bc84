"""
Decision Orchestrator - the service surface.

Wires context store, market data aggregator, decision engine, paper executor,
exit simulator and ledger:

1. update_context(fragment)       validate at the boundary, merge per symbol
2. try_build_decision(symbol)     context -> snapshot -> packet -> ledger
                                  (+ paper execution for EXECUTE)
3. evaluate_open_positions()      one exit sweep over the ledger's open positions
"""

import logging
from typing import Any, Dict, Optional, Union

from audit.ledger import InMemoryLedger, Ledger
from configs.engine_config import EngineConfig
from context.context_store import ContextStore, SymbolContextState
from contracts.decision import DecisionPacket, NotReady
from contracts.enums import Action
from contracts.fragments import ContextFragment
from core.state_store import InMemoryStateStore, StateStore
from data.market_aggregator import MarketDataAggregator
from engine.decision_engine import DecisionEngine
from execution.exit_simulator import ExitCycleResult, ExitSimulator
from execution.paper_executor import PaperExecutor
from utils.errors import LedgerError
from utils.time import Clock, get_now_utc

logger = logging.getLogger(__name__)


class DecisionOrchestrator:

    def __init__(
        self,
        config: EngineConfig,
        context_store: ContextStore,
        aggregator: MarketDataAggregator,
        engine: DecisionEngine,
        executor: PaperExecutor,
        exit_simulator: ExitSimulator,
        ledger: Ledger
    ):
        self.config = config
        self.context_store = context_store
        self.aggregator = aggregator
        self.engine = engine
        self.executor = executor
        self.exit_simulator = exit_simulator
        self.ledger = ledger

        self.stats = {
            "fragments": 0,
            "not_ready": 0,
            "decisions": 0,
            "executions": 0,
            "execution_failures": 0,
        }

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        ledger: Optional[Ledger] = None,
        state_store: Optional[StateStore] = None,
        aggregator: Optional[MarketDataAggregator] = None,
        clock: Clock = get_now_utc
    ) -> "DecisionOrchestrator":
        state_store = state_store or InMemoryStateStore()
        ledger = ledger or InMemoryLedger()
        aggregator = aggregator or MarketDataAggregator.from_config(
            config.market_data, state_store=state_store, clock=clock
        )
        return cls(
            config=config,
            context_store=ContextStore(config.completeness, state_store=state_store, clock=clock),
            aggregator=aggregator,
            engine=DecisionEngine(config),
            executor=PaperExecutor(config),
            exit_simulator=ExitSimulator(
                config, ledger, aggregator.latest_price, clock=clock, iv_source=aggregator.latest_iv_percentile
            ),
            ledger=ledger,
        )

    async def update_context(self, fragment: Union[ContextFragment, Dict[str, Any]]) -> SymbolContextState:
        """Merge one fragment. Dicts are validated first; malformed input raises ValidationError."""
        if not isinstance(fragment, ContextFragment):
            fragment = ContextFragment.parse(fragment)
        state = await self.context_store.update(fragment)
        self.stats["fragments"] += 1
        return state

    async def try_build_decision(self, symbol: str) -> Union[DecisionPacket, NotReady]:
        context = await self.context_store.build(symbol)
        if not context.ready:
            self.stats["not_ready"] += 1
            logger.info(context.reason)
            return context

        snapshot = await self.aggregator.build_snapshot(context.symbol)
        packet = self.engine.decide(context, snapshot)

        try:
            self.ledger.append_decision(packet)
        except LedgerError as e:
            # Same inputs give the same packet id; it has already been handled
            logger.warning(f"Decision {packet.decision_id[:12]} not re-recorded: {e}")
            return packet

        self.stats["decisions"] += 1
        if packet.action == Action.EXECUTE:
            self._execute(packet)
        return packet

    def _execute(self, packet: DecisionPacket):
        try:
            record = self.executor.open(packet)
        except ValueError as e:
            self.stats["execution_failures"] += 1
            logger.error(f"Paper execution failed for {packet.symbol} ({packet.decision_id[:12]}): {e}")
            return None
        self.ledger.append_execution(record)
        self.stats["executions"] += 1
        return record

    async def evaluate_open_positions(self) -> ExitCycleResult:
        return await self.exit_simulator.evaluate_open_positions()

    async def close(self):
        await self.aggregator.close()
