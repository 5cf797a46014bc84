from dataclasses import replace

import pytest

from contracts.enums import Bias, ExecutionQuality
from contracts.fragments import RegimeData, StructureData
from engine.gates import MarketGate, RegimeGate, StructuralGate


def with_regime(context, **update):
    regime = context.regime.model_dump()
    regime.update(update)
    regime.pop("phase_name", None)
    return replace(context, regime=RegimeData(**regime))


def with_structure(context, **update):
    structure = context.structure.model_dump()
    structure.update(update)
    return replace(context, structure=StructureData(**structure))


class TestRegimeGate:

    def test_markup_allows_long(self, config, ready_context, snapshot_factory):
        result = RegimeGate(config).evaluate(ready_context, snapshot_factory())
        assert result.passed
        assert result.score == 95.0
        assert result.details["phase_name"] == "MARKUP"

    def test_distribution_blocks_long(self, config, ready_context, snapshot_factory):
        ctx = with_regime(ready_context, phase=3, bias=Bias.SHORT)
        result = RegimeGate(config).evaluate(ctx, snapshot_factory())
        assert not result.passed
        assert result.score == 0.0
        assert "does not allow LONG" in result.reason

    def test_low_confidence_fails_with_its_score(self, config, ready_context, snapshot_factory):
        ctx = with_regime(ready_context, confidence=50)
        result = RegimeGate(config).evaluate(ctx, snapshot_factory())
        assert not result.passed
        assert result.score == 50.0
        assert "below minimum 65.0" in result.reason

    def test_bias_conflict(self, config, ready_context, snapshot_factory):
        ctx = with_regime(ready_context, bias=Bias.SHORT, confidence=90)
        result = RegimeGate(config).evaluate(ctx, snapshot_factory())
        assert not result.passed
        assert result.score == 45.0
        assert "conflicts with LONG" in result.reason

    def test_neutral_bias_does_not_conflict(self, config, ready_context, snapshot_factory):
        ctx = with_regime(ready_context, bias=Bias.NEUTRAL)
        assert RegimeGate(config).evaluate(ctx, snapshot_factory()).passed

    def test_missing_regime_fails_closed(self, config, ready_context, snapshot_factory):
        result = RegimeGate(config).evaluate(replace(ready_context, regime=None), snapshot_factory())
        assert not result.passed
        assert result.reason == "regime data unavailable"


class TestStructuralGate:

    def test_quality_a_passes(self, config, ready_context, snapshot_factory):
        result = StructuralGate(config).evaluate(ready_context, snapshot_factory())
        assert result.passed
        assert result.score == pytest.approx(95.24, abs=0.01)

    @pytest.mark.parametrize("update, score, fragment_of_reason", [
        ({"valid_setup": False}, 0.0, "setup is not valid"),
        ({"liquidity_ok": False}, 25.0, "insufficient liquidity"),
        ({"execution_quality": ExecutionQuality.C}, 40.0, "execution quality C"),
    ])
    def test_structure_failures(self, config, ready_context, snapshot_factory, update, score, fragment_of_reason):
        result = StructuralGate(config).evaluate(with_structure(ready_context, **update), snapshot_factory())
        assert not result.passed
        assert result.score == score
        assert fragment_of_reason in result.reason

    def test_low_ai_score(self, config, ready_context, snapshot_factory):
        expert = ready_context.expert.model_copy(update={"ai_score": 5.0})
        result = StructuralGate(config).evaluate(replace(ready_context, expert=expert), snapshot_factory())
        assert not result.passed
        assert "AI score 5.0 below minimum 7.0" in result.reason

    def test_weak_alignment(self, config, ready_context, snapshot_factory):
        alignment = ready_context.alignment.model_copy(update={"bullish_pct": 20.0})
        result = StructuralGate(config).evaluate(replace(ready_context, alignment=alignment), snapshot_factory())
        assert not result.passed
        assert "timeframe alignment 20.0%" in result.reason

    def test_alignment_is_optional(self, config, ready_context, snapshot_factory):
        result = StructuralGate(config).evaluate(replace(ready_context, alignment=None), snapshot_factory())
        assert result.passed
        assert "alignment_pct" not in result.details


class TestMarketGate:

    def test_healthy_market(self, config, ready_context, snapshot_factory):
        result = MarketGate(config).evaluate(ready_context, snapshot_factory())
        assert result.passed
        # weakest sub-score is depth
        assert result.score == 85.0

    def test_zero_spread_is_a_value(self, config, ready_context, snapshot_factory):
        result = MarketGate(config).evaluate(ready_context, snapshot_factory(spread_bps=0.0))
        assert result.passed
        assert result.details["sub_scores"]["spread"] == 100.0

    def test_zero_depth_fails_as_below_minimum(self, config, ready_context, snapshot_factory):
        result = MarketGate(config).evaluate(ready_context, snapshot_factory(depth_score=0.0))
        assert not result.passed
        assert "depth score 0.0 below minimum 30.0" in result.reason
        assert "unavailable" not in result.reason

    def test_missing_metric_is_unavailable(self, config, ready_context, snapshot_factory):
        result = MarketGate(config).evaluate(ready_context, snapshot_factory(depth_score=None))
        assert not result.passed
        assert result.reason == "depth score unavailable"

    def test_missing_category(self, config, ready_context, snapshot_factory):
        result = MarketGate(config).evaluate(ready_context, snapshot_factory(liquidity=False))
        assert not result.passed
        assert "spread unavailable (liquidity data unavailable)" in result.reason
        assert "depth score unavailable (liquidity data unavailable)" in result.reason
        assert result.score == 0.0

    def test_all_failures_reported(self, config, ready_context, snapshot_factory):
        result = MarketGate(config).evaluate(
            ready_context, snapshot_factory(spread_bps=20.0, spike_ratio=3.0, depth_score=10.0)
        )
        assert not result.passed
        assert len(result.details["failures"]) == 3
        assert "spread 20.0bps exceeds max 12.0bps" in result.reason
        assert "volatility spike ratio 3.00 exceeds max 2.5" in result.reason
