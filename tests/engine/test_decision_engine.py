from dataclasses import replace
from datetime import datetime, timezone

import pytest

from configs.config_manager import config_from_dict
from contracts.enums import Action, Direction
from engine.decision_engine import ENGINE_VERSION, DecisionEngine, decide
from engine.gates import MARKET_GATE


def test_scenario_execute(config, ready_context, snapshot_factory):
    packet = DecisionEngine(config).decide(ready_context, snapshot_factory())

    assert packet.action == Action.EXECUTE
    assert packet.direction == Direction.LONG
    assert packet.confidence_score == 92.6
    assert packet.size_multiplier == 1.0
    assert packet.all_gates_passed
    assert packet.session == "MIDDAY"
    assert packet.engine_version == ENGINE_VERSION
    assert packet.config_hash == config.fingerprint()
    assert packet.timestamp == ready_context.built_at
    assert len(packet.decision_id) == 64


def test_confidence_breakdown(config, ready_context, snapshot_factory):
    b = DecisionEngine(config).decide(ready_context, snapshot_factory()).confidence_breakdown
    assert b.regime == 95.0
    assert b.expert == pytest.approx(90.48)
    assert b.alignment == 96.0
    assert b.market == 85.0
    assert b.structural == pytest.approx(95.24)
    assert sum(b.weights.values()) == pytest.approx(1.0)


def test_size_breakdown_is_capped_by_phase(config, ready_context, snapshot_factory):
    size = DecisionEngine(config).decide(ready_context, snapshot_factory()).size_breakdown
    assert size.base == 2.5
    assert size.quality == 1.15
    assert size.phase_boost == 0.10
    assert size.raw == pytest.approx(3.1625)
    assert size.phase_cap == 1.0
    assert size.final == 1.0


def test_wide_spread_skips(config, ready_context, snapshot_factory):
    packet = DecisionEngine(config).decide(ready_context, snapshot_factory(spread_bps=20.0))

    assert packet.action == Action.SKIP
    assert packet.size_multiplier == 0.0
    assert packet.size_breakdown is None
    assert not packet.gate(MARKET_GATE).passed
    assert any("spread 20.0bps exceeds max 12.0bps" in r for r in packet.reasons)


def test_same_inputs_same_packet(config, ready_context, snapshot_factory):
    snapshot = snapshot_factory()
    first = decide(ready_context, snapshot, config)
    second = decide(ready_context, snapshot, config)
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_config_change_changes_decision_id(config, ready_context, snapshot_factory):
    snapshot = snapshot_factory()
    other = config_from_dict({"thresholds": {"execute": 90}})
    assert decide(ready_context, snapshot, config).decision_id != decide(ready_context, snapshot, other).decision_id


def test_restricted_session_waits(config, ready_context, snapshot_factory):
    # 08:00 US/Eastern
    premarket = replace(ready_context, built_at=datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc))
    packet = DecisionEngine(config).decide(premarket, snapshot_factory())
    assert packet.session == "PREMARKET"
    assert packet.action == Action.WAIT
    assert "restricted session PREMARKET" in packet.reasons


def test_incomplete_snapshot_waits(config, ready_context, snapshot_factory):
    packet = DecisionEngine(config).decide(ready_context, snapshot_factory(options=False))
    assert packet.all_gates_passed
    assert packet.action == Action.WAIT
    assert any("snapshot completeness" in r for r in packet.reasons)


def test_confidence_between_thresholds_waits(ready_context, snapshot_factory):
    strict = config_from_dict({"thresholds": {"execute": 95, "wait": 65}})
    packet = DecisionEngine(strict).decide(ready_context, snapshot_factory())
    assert packet.action == Action.WAIT
    assert packet.reasons[0] == "confidence 92.6 below execute threshold 95.0"


def test_confidence_below_wait_skips(ready_context, snapshot_factory):
    strict = config_from_dict({"thresholds": {"execute": 98, "wait": 95}})
    packet = DecisionEngine(strict).decide(ready_context, snapshot_factory())
    assert packet.action == Action.SKIP
    assert packet.all_gates_passed


def test_alignment_weight_renormalized_when_absent(config, ready_context, snapshot_factory):
    packet = DecisionEngine(config).decide(replace(ready_context, alignment=None), snapshot_factory())
    assert packet.confidence_breakdown.alignment is None
    assert "alignment" not in packet.confidence_breakdown.weights
    assert packet.action == Action.EXECUTE


def test_symbol_mismatch_rejected(config, ready_context, snapshot_factory):
    with pytest.raises(ValueError):
        DecisionEngine(config).decide(ready_context, snapshot_factory(symbol="QQQ"))
