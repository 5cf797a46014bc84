import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from configs.engine_config import EngineConfig
from context.context_store import ContextStore
from contracts.enums import Category, Direction, DteBucket, FillQuality, GammaBias, OptionType, Source, TradeVelocity
from contracts.fragments import ContextFragment
from contracts.market import CategoryResult, LiquidityMetrics, MarketSnapshot, OptionsMetrics, StatsMetrics
from contracts.records import ExecutionRecord
from derivatives.black_scholes import OptionPricer

# Wednesday 12:00 US/Eastern (MIDDAY session)
MIDDAY_UTC = datetime(2026, 10, 14, 16, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = MIDDAY_UTC):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


DEFAULT_PAYLOADS = {
    Source.SATY_PHASE: {
        "regime": {"phase": 2, "bias": "LONG", "confidence": 95, "volatility": "NORMAL"},
    },
    Source.ULTIMATE_OPTIONS: {
        "expert": {"direction": "LONG", "quality": "HIGH", "ai_score": 9.5, "timeframe": "15", "rr1": 2.0, "rr2": 3.5},
    },
    Source.TRADINGVIEW_SIGNAL: {
        "expert": {"direction": "LONG", "quality": "MEDIUM", "ai_score": 8.0, "timeframe": "5"},
    },
    Source.MTF_DOTS: {
        "alignment": {
            "tf_states": {"5": "BULLISH", "15": "BULLISH", "60": "BULLISH", "240": "NEUTRAL"},
            "bullish_pct": 80,
            "bearish_pct": 10,
        },
    },
    Source.STRAT_EXEC: {
        "structure": {"valid_setup": True, "liquidity_ok": True, "execution_quality": "A"},
    },
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def raw_fragment(clock):
    """Build a normalized fragment dict; payload sections merge over the defaults."""
    def _make(source: Source, symbol: str = "SPY", at: datetime = None, price: float = 450.0, **sections):
        payload = {}
        for section, values in DEFAULT_PAYLOADS[source].items():
            payload[section] = {**values, **sections.get(section, {})}
        raw = {
            "source": source.value,
            "symbol": symbol,
            "received_at": (at or clock()).isoformat(),
            **payload,
        }
        if price is not None:
            raw["price"] = price
        return raw
    return _make


@pytest.fixture
def fragment(raw_fragment):
    def _make(source: Source, **kwargs) -> ContextFragment:
        return ContextFragment.parse(raw_fragment(source, **kwargs))
    return _make


@pytest.fixture
def snapshot_factory(clock):
    """MarketSnapshot with healthy defaults; pass None for a metric to omit it."""
    def _make(
        symbol: str = "SPY",
        spread_bps=2.0,
        depth_score=85.0,
        spike_ratio=1.1,
        iv_percentile=50.0,
        options=True,
        stats=True,
        liquidity=True,
    ) -> MarketSnapshot:
        now = clock()

        def _result(category, available, data, provider):
            if not available:
                return CategoryResult.unavailable(category, (f"{category.value}: all providers failed",))
            return CategoryResult(category=category, available=True, data=data, provider=provider, fetched_at=now)

        return MarketSnapshot(
            symbol=symbol,
            options=_result(
                Category.OPTIONS, options,
                OptionsMetrics(
                    put_call_ratio=0.9,
                    iv_percentile=iv_percentile,
                    gamma_bias=GammaBias.NEUTRAL,
                    option_volume=120000,
                    max_pain=448.0,
                ),
                "tradier",
            ),
            stats=_result(
                Category.STATS, stats,
                StatsMetrics(
                    atr14=4.2,
                    rv20=0.16,
                    trend_slope=0.3,
                    rsi=58.0,
                    volume=7.5e7,
                    volume_ratio=1.1,
                    volatility_spike_ratio=spike_ratio,
                    last_close=449.5,
                ),
                "twelvedata",
            ),
            liquidity=_result(
                Category.LIQUIDITY, liquidity,
                LiquidityMetrics(
                    spread_bps=spread_bps,
                    depth_score=depth_score,
                    trade_velocity=TradeVelocity.NORMAL,
                    bid=449.95,
                    ask=450.05,
                    bid_size=300,
                    ask_size=420,
                    last_price=450.0,
                ),
                "alpaca",
            ),
            fetched_at=now,
        )
    return _make


@pytest.fixture
def ready_context(config, clock, fragment):
    """Scenario A context: regime, expert, alignment and structure all fresh."""
    async def _build():
        store = ContextStore(config.completeness, clock=clock)
        for source in (Source.SATY_PHASE, Source.ULTIMATE_OPTIONS, Source.MTF_DOTS, Source.STRAT_EXEC):
            await store.update(fragment(source))
        return await store.build("SPY")

    return asyncio.run(_build())


@pytest.fixture
def position_factory(config, clock):
    """Open LONG 3x SPY 450 CALL, two days to expiry, priced at IV 0.20."""
    pricing = OptionPricer(config.pricing).value(450.0, 450.0, 2, OptionType.CALL, 0.20)

    def _make(**overrides) -> ExecutionRecord:
        theo = round(pricing.price, 4)
        fields = dict(
            execution_id="exec-1",
            decision_id="dec-1",
            symbol="SPY",
            direction=Direction.LONG,
            option_type=OptionType.CALL,
            strike=450.0,
            expiry="2026-10-16",
            dte=2,
            dte_bucket=DteBucket.WEEKLY,
            contracts_requested=3,
            filled_contracts=3,
            fill_quality=FillQuality.FULL,
            entry_price=theo,
            theoretical_price=theo,
            underlying_at_entry=450.0,
            entry_greeks=pricing.greeks,
            pricing_fallback_used=False,
            spread_cost=2.0,
            slippage_cost=1.0,
            commission=1.95,
            risk_amount=round(theo * 300, 2),
            stop_loss=441.0,
            target_1=459.0,
            target_2=468.0,
            opened_at=clock(),
        )
        fields.update(overrides)
        return ExecutionRecord(**fields)
    return _make
