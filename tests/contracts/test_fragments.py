import unittest
from datetime import datetime, timezone

from contracts.enums import Source
from contracts.fragments import ContextFragment
from utils.errors import ValidationError

NOW = datetime(2026, 10, 14, 16, 0, tzinfo=timezone.utc).isoformat()


def _regime(**overrides):
    raw = {
        "source": "SATY_PHASE",
        "symbol": " spy ",
        "received_at": NOW,
        "regime": {"phase": 3, "bias": "SHORT", "confidence": 72, "volatility": "HIGH"},
    }
    raw.update(overrides)
    return raw


class TestContextFragment(unittest.TestCase):

    def test_parse_normalizes_symbol_and_phase_name(self):
        frag = ContextFragment.parse(_regime())
        self.assertEqual(frag.symbol, "SPY")
        self.assertEqual(frag.source, Source.SATY_PHASE)
        self.assertEqual(frag.regime.phase_name, "DISTRIBUTION")
        self.assertEqual(frag.section, "regime")
        self.assertIs(frag.payload, frag.regime)

    def test_naive_timestamp_is_treated_as_utc(self):
        frag = ContextFragment.parse(_regime(received_at="2026-10-14T16:00:00"))
        self.assertEqual(frag.received_at.utcoffset().total_seconds(), 0)
        self.assertEqual(frag.received_at.hour, 16)

    def test_section_must_match_source(self):
        raw = _regime()
        raw["expert"] = {"direction": "LONG", "quality": "HIGH", "ai_score": 9, "timeframe": "15"}
        del raw["regime"]
        with self.assertRaises(ValidationError) as ctx:
            ContextFragment.parse(raw)
        self.assertTrue(ctx.exception.errors)

    def test_two_sections_rejected(self):
        raw = _regime(structure={"valid_setup": True, "liquidity_ok": True, "execution_quality": "A"})
        with self.assertRaises(ValidationError):
            ContextFragment.parse(raw)

    def test_out_of_range_values_rejected(self):
        for regime in (
            {"phase": 5, "bias": "LONG", "confidence": 80, "volatility": "LOW"},
            {"phase": 2, "bias": "LONG", "confidence": 101, "volatility": "LOW"},
            {"phase": 2, "bias": "UP", "confidence": 80, "volatility": "LOW"},
        ):
            with self.assertRaises(ValidationError):
                ContextFragment.parse(_regime(regime=regime))

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            ContextFragment.parse(_regime(comment="extra"))
        locs = [e["loc"] for e in ctx.exception.errors]
        self.assertIn("comment", locs)

    def test_non_mapping_rejected(self):
        with self.assertRaises(ValidationError):
            ContextFragment.parse(["SATY_PHASE"])

    def test_expert_timeframe_coerced_from_int(self):
        frag = ContextFragment.parse({
            "source": "ULTIMATE_OPTIONS",
            "symbol": "QQQ",
            "received_at": NOW,
            "expert": {"direction": "SHORT", "quality": "EXTREME", "ai_score": 10.5, "timeframe": 240},
        })
        self.assertEqual(frag.expert.timeframe, "240")
        self.assertEqual(frag.expert.timeframe_minutes, 240)
        self.assertEqual(frag.expert.components, ())

    def test_expert_components_accepted(self):
        frag = ContextFragment.parse({
            "source": "ULTIMATE_OPTIONS",
            "symbol": "SPY",
            "received_at": NOW,
            "expert": {
                "direction": "LONG", "quality": "HIGH", "ai_score": 9, "timeframe": "15",
                "components": ["trend", "momentum"],
            },
        })
        self.assertEqual(frag.expert.components, ("trend", "momentum"))

    def test_expert_components_must_be_names(self):
        with self.assertRaises(ValidationError):
            ContextFragment.parse({
                "source": "ULTIMATE_OPTIONS",
                "symbol": "SPY",
                "received_at": NOW,
                "expert": {
                    "direction": "LONG", "quality": "HIGH", "ai_score": 9, "timeframe": "15",
                    "components": {"trend": 1.0},
                },
            })

    def test_alignment_percentages_cannot_exceed_100(self):
        with self.assertRaises(ValidationError):
            ContextFragment.parse({
                "source": "MTF_DOTS",
                "symbol": "QQQ",
                "received_at": NOW,
                "alignment": {"bullish_pct": 70, "bearish_pct": 40},
            })

    def test_fragment_is_immutable(self):
        frag = ContextFragment.parse(_regime())
        with self.assertRaises(Exception):
            frag.symbol = "QQQ"


if __name__ == "__main__":
    unittest.main()
