"""
Decision gates.

Each gate returns a GateResult (passed, score, reason). Gates fail closed:
a missing input is a failed check with an explicit reason. A metric that is
present and exactly zero is evaluated like any other value.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from configs.engine_config import EngineConfig
from contracts.decision import DecisionContext, GateResult
from contracts.enums import Bias, ExecutionQuality
from contracts.fragments import AI_SCORE_MAX
from contracts.market import MarketSnapshot

logger = logging.getLogger("DECISION_GATES")

REGIME_GATE = "REGIME_GATE"
STRUCTURAL_GATE = "STRUCTURAL_GATE"
MARKET_GATE = "MARKET_GATE"


def normalized_ai_score(ai_score: float) -> float:
    return min(100.0, max(0.0, ai_score / AI_SCORE_MAX * 100.0))


class Gate:
    name = "GATE"

    def __init__(self, config: EngineConfig):
        self.config = config

    def evaluate(self, context: DecisionContext, snapshot: MarketSnapshot) -> GateResult:
        raise NotImplementedError

    def _result(self, passed: bool, score: float, reason: str, **details) -> GateResult:
        if not passed:
            logger.info(f"{self.name} FAIL: {reason}")
        return GateResult(
            name=self.name,
            passed=passed,
            score=round(float(score), 2),
            reason=reason,
            details=details,
        )


class RegimeGate(Gate):
    """Phase must allow the direction; confidence and bias must support it."""

    name = REGIME_GATE

    def evaluate(self, context, snapshot):
        regime = context.regime
        direction = context.direction
        scoring = self.config.scoring

        if regime is None:
            return self._result(False, scoring.critical_failure_score, "regime data unavailable")

        rule = self.config.sizing.phase_rules[regime.phase]
        details = {
            "phase": regime.phase,
            "phase_name": regime.phase_name,
            "bias": regime.bias.value,
            "confidence": regime.confidence,
            "volatility": regime.volatility.value,
            "direction": direction.value,
        }

        if direction not in rule.allowed:
            allowed = [d.value for d in rule.allowed] or "none"
            return self._result(
                False, scoring.critical_failure_score,
                f"phase {regime.phase} ({regime.phase_name}) does not allow {direction.value} (allowed: {allowed})",
                **details
            )

        min_conf = self.config.thresholds.min_regime_confidence
        if regime.confidence < min_conf:
            return self._result(
                False, regime.confidence,
                f"regime confidence {regime.confidence} below minimum {min_conf}",
                **details
            )

        if regime.bias != Bias.NEUTRAL and regime.bias.value != direction.value:
            return self._result(
                False, regime.confidence * scoring.bias_conflict_factor,
                f"regime bias {regime.bias.value} conflicts with {direction.value}",
                **details
            )

        return self._result(
            True, regime.confidence,
            f"phase {regime.phase} ({regime.phase_name}) allows {direction.value}, confidence {regime.confidence}",
            **details
        )


class StructuralGate(Gate):
    """Setup validity, liquidity, execution quality, AI score and alignment."""

    name = STRUCTURAL_GATE

    def evaluate(self, context, snapshot):
        structure = context.structure
        scoring = self.config.scoring
        thresholds = self.config.thresholds

        if structure is None:
            return self._result(False, scoring.critical_failure_score, "structure data unavailable")

        ai_score = context.expert.ai_score
        ai_norm = normalized_ai_score(ai_score)
        details: Dict[str, Any] = {
            "valid_setup": structure.valid_setup,
            "liquidity_ok": structure.liquidity_ok,
            "execution_quality": structure.execution_quality.value,
            "ai_score": ai_score,
        }

        if not structure.valid_setup:
            return self._result(False, scoring.critical_failure_score, "setup is not valid", **details)
        if not structure.liquidity_ok:
            return self._result(False, scoring.liquidity_failure_score, "structure reports insufficient liquidity", **details)
        if structure.execution_quality == ExecutionQuality.C:
            return self._result(False, scoring.quality_failure_score, "execution quality C", **details)
        if ai_score < thresholds.min_ai_score:
            return self._result(
                False, ai_norm,
                f"AI score {ai_score} below minimum {thresholds.min_ai_score}",
                **details
            )

        if context.alignment is not None:
            pct = context.alignment.pct_for(context.direction)
            details["alignment_pct"] = pct
            if pct < thresholds.min_alignment_pct:
                return self._result(
                    False, pct,
                    f"timeframe alignment {pct}% for {context.direction.value} below minimum {thresholds.min_alignment_pct}%",
                    **details
                )

        quality_score = scoring.execution_quality_scores[structure.execution_quality]
        score = (quality_score + ai_norm) / 2.0
        return self._result(
            True, score,
            f"valid setup, quality {structure.execution_quality.value}, AI score {ai_score}",
            **details
        )


class MarketGate(Gate):
    """
    Spread, volatility spike and depth from the snapshot.

    All three sub-checks always run and every failure is reported.
    Gate score is the weakest sub-score.
    """

    name = MARKET_GATE

    def evaluate(self, context, snapshot):
        liquidity = snapshot.liquidity_data
        stats = snapshot.stats_data

        checks = [
            self._check_spread(liquidity.spread_bps if liquidity else None, liquidity is None),
            self._check_spike(stats.volatility_spike_ratio if stats else None, stats is None),
            self._check_depth(liquidity.depth_score if liquidity else None, liquidity is None),
        ]

        failures = [reason for _, passed, _, reason in checks if not passed]
        sub_scores = {name: score for name, _, score, _ in checks}
        details = {
            "spread_bps": liquidity.spread_bps if liquidity else None,
            "volatility_spike_ratio": stats.volatility_spike_ratio if stats else None,
            "depth_score": liquidity.depth_score if liquidity else None,
            "sub_scores": sub_scores,
            "failures": failures,
        }
        score = min(sub_scores.values())

        if failures:
            return self._result(False, score, "; ".join(failures), **details)
        return self._result(
            True, score,
            "; ".join(reason for _, _, _, reason in checks),
            **details
        )

    @staticmethod
    def _unavailable(metric: str, category_missing: bool, category: str) -> str:
        if category_missing:
            return f"{metric} unavailable ({category} data unavailable)"
        return f"{metric} unavailable"

    def _check_spread(self, spread: Optional[float], category_missing: bool) -> Tuple[str, bool, float, str]:
        gate = self.config.market_gate
        if spread is None:
            return "spread", False, 0.0, self._unavailable("spread", category_missing, "liquidity")
        if spread > gate.max_spread_bps:
            score = gate.pass_score_floor * gate.max_spread_bps / spread
            return "spread", False, score, f"spread {spread:.1f}bps exceeds max {gate.max_spread_bps}bps"
        score = max(gate.pass_score_floor, 100.0 - spread)
        return "spread", True, score, f"spread {spread:.1f}bps"

    def _check_spike(self, ratio: Optional[float], category_missing: bool) -> Tuple[str, bool, float, str]:
        gate = self.config.market_gate
        if ratio is None:
            return "volatility_spike", False, 0.0, self._unavailable("volatility spike ratio", category_missing, "stats")
        if ratio > gate.max_volatility_spike:
            score = gate.pass_score_floor * gate.max_volatility_spike / ratio
            return (
                "volatility_spike", False, score,
                f"volatility spike ratio {ratio:.2f} exceeds max {gate.max_volatility_spike}"
            )
        excess = max(0.0, ratio - 1.0)
        score = max(gate.pass_score_floor, 100.0 - 100.0 * excess / gate.max_volatility_spike)
        return "volatility_spike", True, score, f"volatility spike ratio {ratio:.2f}"

    def _check_depth(self, depth: Optional[float], category_missing: bool) -> Tuple[str, bool, float, str]:
        gate = self.config.market_gate
        if depth is None:
            return "depth", False, 0.0, self._unavailable("depth score", category_missing, "liquidity")
        if depth < gate.min_depth_score:
            return "depth", False, depth, f"depth score {depth:.1f} below minimum {gate.min_depth_score}"
        return "depth", True, min(100.0, depth), f"depth score {depth:.1f}"


def build_gates(config: EngineConfig) -> List[Gate]:
    """Gates in evaluation order."""
    return [RegimeGate(config), StructuralGate(config), MarketGate(config)]
