# tests/context/test_context_store.py
import asyncio

import pytest

from context.context_store import ContextStore
from contracts.enums import Direction, Source


def _run(coro):
    return asyncio.run(coro)


def _store(config, clock):
    return ContextStore(config.completeness, clock=clock)


ALL_SOURCES = (Source.SATY_PHASE, Source.ULTIMATE_OPTIONS, Source.MTF_DOTS, Source.STRAT_EXEC)


def test_not_ready_names_missing_regime(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        await store.update(fragment(Source.ULTIMATE_OPTIONS))
        await store.update(fragment(Source.STRAT_EXEC))
        return await store.build("SPY")

    result = _run(scenario())
    assert not result.ready
    assert "regime" in result.missing_sections
    assert Source.SATY_PHASE.value in result.missing
    assert result.stale == ()


def test_ready_context_carries_all_sections(ready_context):
    assert ready_context.ready
    assert ready_context.symbol == "SPY"
    assert ready_context.expert_source == Source.ULTIMATE_OPTIONS
    assert ready_context.direction == Direction.LONG
    assert ready_context.regime.phase == 2
    assert ready_context.regime.phase_name == "MARKUP"
    assert ready_context.alignment.bullish_pct == 80
    assert ready_context.structure.valid_setup
    assert ready_context.price == 450.0


def test_unknown_symbol_is_not_ready(config, clock):
    result = _run(_store(config, clock).build("QQQ"))
    assert not result.ready
    assert set(result.missing_sections) == {"regime", "structure", "expert"}


def test_update_is_idempotent(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        for source in ALL_SOURCES:
            await store.update(fragment(source))
        first = await store.build("SPY")
        await store.update(fragment(Source.SATY_PHASE))
        second = await store.build("SPY")
        return first, second

    first, second = _run(scenario())
    assert first == second


def test_optional_source_never_makes_context_unready(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        for source in (Source.SATY_PHASE, Source.ULTIMATE_OPTIONS, Source.STRAT_EXEC):
            await store.update(fragment(source))
        before = await store.build("SPY")
        await store.update(fragment(Source.MTF_DOTS))
        after = await store.build("SPY")
        return before, after

    before, after = _run(scenario())
    assert before.ready and before.alignment is None
    assert after.ready and after.alignment is not None
    assert after.completeness > before.completeness


def test_stale_required_source_counts_as_absent(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        await store.update(fragment(Source.SATY_PHASE))
        clock.advance(config.completeness.freshness_window_seconds + 1)
        await store.update(fragment(Source.ULTIMATE_OPTIONS))
        await store.update(fragment(Source.STRAT_EXEC))
        expired = await store.build("SPY")
        await store.update(fragment(Source.SATY_PHASE))
        refreshed = await store.build("SPY")
        return expired, refreshed

    result, refreshed = _run(scenario())
    assert not result.ready
    assert result.stale == (Source.SATY_PHASE.value,)
    assert result.missing_sections == ("regime",)
    assert "stale" in result.reason

    # a fresh copy of the stale source restores readiness
    assert refreshed.ready
    assert Source.SATY_PHASE.value in refreshed.sources_used
    assert refreshed.regime is not None


def test_most_recent_expert_wins(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        await store.update(fragment(Source.SATY_PHASE))
        await store.update(fragment(Source.STRAT_EXEC))
        await store.update(fragment(Source.ULTIMATE_OPTIONS))
        clock.advance(10)
        await store.update(fragment(Source.TRADINGVIEW_SIGNAL, expert={"direction": "SHORT"}))
        return await store.build("SPY")

    result = _run(scenario())
    assert result.ready
    assert result.expert_source == Source.TRADINGVIEW_SIGNAL
    assert result.direction == Direction.SHORT
    assert Source.ULTIMATE_OPTIONS.value not in result.sources_used


def test_out_of_order_fragment_applies_in_arrival_order(config, clock, fragment):
    store = _store(config, clock)
    earlier = clock()
    clock.advance(30)

    async def scenario():
        await store.update(fragment(Source.SATY_PHASE, regime={"confidence": 90}))
        await store.update(fragment(Source.SATY_PHASE, at=earlier, regime={"confidence": 70}))
        return await store.store.get("context", "SPY")

    state = _run(scenario())
    assert state.fragments[Source.SATY_PHASE].regime.confidence == 70
    assert state.last_updated[Source.SATY_PHASE] == earlier
    assert state.version == 2


def test_concurrent_updates_are_never_lost(config, clock, fragment):
    store = _store(config, clock)
    symbols = ["SPY", "QQQ", "IWM", "AAPL", "MSFT"]

    async def scenario():
        updates = [
            store.update(fragment(source, symbol=sym))
            for _ in range(5)
            for sym in symbols
            for source in ALL_SOURCES
        ]
        await asyncio.gather(*updates)
        states = [await store.store.get("context", s) for s in symbols]
        contexts = [await store.build(s) for s in symbols]
        return states, contexts

    states, contexts = _run(scenario())
    for state in states:
        assert state.version == 5 * len(ALL_SOURCES)
        assert set(state.fragments) == set(ALL_SOURCES)
    assert all(c.ready for c in contexts)


def test_sweep_expired_drops_old_sources(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        await store.update(fragment(Source.SATY_PHASE))
        clock.advance(config.completeness.freshness_window_seconds + 5)
        await store.update(fragment(Source.STRAT_EXEC))
        dropped = await store.sweep_expired()
        stats = await store.completeness_stats("SPY")
        return dropped, stats

    dropped, stats = _run(scenario())
    assert dropped == 1
    assert stats["sources"][Source.SATY_PHASE.value]["present"] is False
    assert stats["sources"][Source.STRAT_EXEC.value]["fresh"] is True
    assert stats["ready"] is False


def test_clear_removes_symbol(config, clock, fragment):
    store = _store(config, clock)

    async def scenario():
        await store.update(fragment(Source.SATY_PHASE, symbol="SPY"))
        await store.update(fragment(Source.SATY_PHASE, symbol="QQQ"))
        await store.clear("spy")
        return sorted(await store.symbols())

    assert _run(scenario()) == ["QQQ"]


@pytest.mark.parametrize("source", ALL_SOURCES)
def test_each_source_stamps_its_own_section(config, clock, fragment, source):
    store = _store(config, clock)
    state = _run(store.update(fragment(source)))
    assert state.fragments[source].section == source.section
