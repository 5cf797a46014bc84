"""
Decision Engine.

decide(context, snapshot) is a pure function of its inputs and the frozen
config: gates run in fixed order, then confidence, the action rule and
sizing. The packet timestamp is the context build time and the packet id is
a hash of its content, so replaying the same inputs reproduces the packet
exactly.
"""

import logging
from dataclasses import replace
from typing import List, Sequence, Tuple

from configs.engine_config import EngineConfig
from contracts.decision import DecisionContext, DecisionPacket, GateResult, content_hash
from contracts.enums import Action
from contracts.market import MarketSnapshot
from engine.gates import build_gates
from engine.scoring import confidence_breakdown, size_breakdown
from utils.time import market_session

logger = logging.getLogger("DECISION_ENGINE")

ENGINE_VERSION = "2.5.0"


class DecisionEngine:

    def __init__(self, config: EngineConfig):
        self.config = config
        self.config_hash = config.fingerprint()
        self.gates = build_gates(config)

    def decide(self, context: DecisionContext, snapshot: MarketSnapshot) -> DecisionPacket:
        if context.symbol != snapshot.symbol:
            raise ValueError(f"context is for {context.symbol}, snapshot for {snapshot.symbol}")

        gate_results = tuple(gate.evaluate(context, snapshot) for gate in self.gates)
        by_name = {g.name: g for g in gate_results}

        breakdown = confidence_breakdown(context, by_name, self.config)
        confidence = breakdown.total
        session = market_session(context.built_at)
        action, reasons = self._action(gate_results, confidence, session, snapshot)

        size = size_breakdown(context, confidence, session, self.config) if action == Action.EXECUTE else None

        packet = DecisionPacket(
            decision_id="",
            symbol=context.symbol,
            action=action,
            direction=context.direction,
            confidence_score=confidence,
            confidence_breakdown=breakdown,
            size_multiplier=size.final if size else 0.0,
            size_breakdown=size,
            gate_results=gate_results,
            reasons=tuple(reasons),
            session=session,
            context=context,
            snapshot=snapshot,
            engine_version=ENGINE_VERSION,
            config_hash=self.config_hash,
            timestamp=context.built_at,
        )
        packet = replace(packet, decision_id=content_hash(packet.content_dict()))

        logger.info(
            f"{packet.symbol} {packet.action.value} {packet.direction.value} "
            f"confidence={confidence} size={packet.size_multiplier} "
            f"id={packet.decision_id[:12]}"
        )
        return packet

    def _soft_conditions(self, session: str, snapshot: MarketSnapshot) -> List[str]:
        soft = []
        if session in self.config.sessions.restricted_sessions:
            soft.append(f"restricted session {session}")
        min_completeness = self.config.thresholds.min_snapshot_completeness
        if snapshot.completeness < min_completeness:
            soft.append(f"snapshot completeness {snapshot.completeness:.2f} below {min_completeness}")
        return soft

    def _action(
        self,
        gate_results: Sequence[GateResult],
        confidence: float,
        session: str,
        snapshot: MarketSnapshot
    ) -> Tuple[Action, List[str]]:
        thresholds = self.config.thresholds

        failed = [g for g in gate_results if not g.passed]
        if failed:
            return Action.SKIP, [f"{g.name}: {g.reason}" for g in failed]

        soft = self._soft_conditions(session, snapshot)
        if confidence >= thresholds.execute:
            if soft:
                return Action.WAIT, soft
            return Action.EXECUTE, [f"confidence {confidence} meets execute threshold {thresholds.execute}"]
        if confidence >= thresholds.wait:
            return Action.WAIT, [f"confidence {confidence} below execute threshold {thresholds.execute}"] + soft
        return Action.SKIP, [f"confidence {confidence} below wait threshold {thresholds.wait}"]


def decide(
    context: DecisionContext,
    snapshot: MarketSnapshot,
    config: EngineConfig
) -> DecisionPacket:
    """Functional form: same inputs and config give the same packet."""
    return DecisionEngine(config).decide(context, snapshot)
