"""
Confidence and position sizing.

Every weight, tier and cap comes from EngineConfig; this module holds no
calibration of its own.
"""

from typing import Dict, Optional

from configs.engine_config import EngineConfig
from contracts.decision import ConfidenceBreakdown, DecisionContext, GateResult, SizeBreakdown
from engine.gates import MARKET_GATE, REGIME_GATE, STRUCTURAL_GATE, normalized_ai_score


def expert_score(context: DecisionContext, config: EngineConfig) -> float:
    score = normalized_ai_score(context.expert.ai_score)
    if context.expert.ai_score < config.thresholds.min_ai_score:
        score *= config.scoring.ai_penalty
    return score


def alignment_score(context: DecisionContext, config: EngineConfig) -> Optional[float]:
    """Directional alignment with a bonus for strong agreement. None if absent."""
    if context.alignment is None:
        return None
    pct = context.alignment.pct_for(context.direction)
    if pct >= config.thresholds.strong_alignment_pct:
        pct *= config.scoring.alignment_bonus
    return min(100.0, pct)


def confidence_breakdown(
    context: DecisionContext,
    gates: Dict[str, GateResult],
    config: EngineConfig
) -> ConfidenceBreakdown:
    """
    Weighted blend of per-source sub-scores on a 0-100 scale.

    Alignment is quality-only: when it is absent its weight is left out and
    the remaining weights are renormalized.
    """
    scores = {
        "regime": gates[REGIME_GATE].score,
        "expert": expert_score(context, config),
        "alignment": alignment_score(context, config),
        "market": gates[MARKET_GATE].score,
        "structural": gates[STRUCTURAL_GATE].score,
    }
    weights = config.weights.as_dict()
    active = {k: w for k, w in weights.items() if scores[k] is not None}
    weight_sum = sum(active.values())
    total = sum(scores[k] * w for k, w in active.items()) / weight_sum if weight_sum > 0 else 0.0

    return ConfidenceBreakdown(
        regime=round(scores["regime"], 2),
        expert=round(scores["expert"], 2),
        alignment=round(scores["alignment"], 2) if scores["alignment"] is not None else None,
        market=round(scores["market"], 2),
        structural=round(scores["structural"], 2),
        weights=active,
        total=round(total, 1),
    )


def size_breakdown(
    context: DecisionContext,
    confidence: float,
    session: str,
    config: EngineConfig
) -> SizeBreakdown:
    """
    base(confidence) x quality x timeframe x session x (1 + phase boost),
    then capped by phase rule and volatility regime, then clamped to the
    configured [size_min, size_max] band.
    """
    s = config.sizing
    regime = context.regime

    base = s.tier_value(s.confidence_tiers, confidence, s.default_multiplier)
    quality = s.quality_multipliers[context.expert.quality]
    timeframe = s.timeframe_multipliers.get(context.expert.timeframe, s.default_timeframe_multiplier)
    session_mult = s.session_multipliers[session]
    boost = min(s.max_phase_boost, s.tier_value(s.phase_boost_tiers, regime.confidence, 0.0))

    raw = base * quality * timeframe * session_mult * (1.0 + boost)
    phase_cap = s.phase_rules[regime.phase].size_cap
    vol_cap = s.volatility_caps[regime.volatility]
    capped = min(raw, phase_cap, vol_cap)
    final = min(max(capped, s.size_min), s.size_max)

    return SizeBreakdown(
        base=base,
        quality=quality,
        timeframe=timeframe,
        session=session_mult,
        phase_boost=boost,
        phase_cap=phase_cap,
        volatility_cap=vol_cap,
        raw=round(raw, 4),
        final=round(final, 2),
    )
