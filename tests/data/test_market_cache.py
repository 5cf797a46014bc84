from contracts.enums import Category
from contracts.market import LiquidityMetrics, StatsMetrics
from data.cache.market_cache import MarketDataCache

TTL = {Category.OPTIONS: 300.0, Category.STATS: 300.0, Category.LIQUIDITY: 60.0}


def test_entry_reused_within_ttl(clock):
    cache = MarketDataCache(TTL, clock=clock)
    data = LiquidityMetrics(spread_bps=3.0, depth_score=70.0)
    stored = cache.set(Category.LIQUIDITY, "spy", data, "alpaca")

    clock.advance(59)
    entry = cache.get(Category.LIQUIDITY, "SPY")
    assert entry is stored
    assert entry.provider == "alpaca"
    assert cache.get_stats()["hits"] == 1


def test_entry_expires_per_category(clock):
    cache = MarketDataCache(TTL, clock=clock)
    cache.set(Category.LIQUIDITY, "SPY", LiquidityMetrics(spread_bps=3.0), "alpaca")
    cache.set(Category.STATS, "SPY", StatsMetrics(atr14=4.0), "twelvedata")

    clock.advance(61)
    assert cache.get(Category.LIQUIDITY, "SPY") is None
    assert cache.get(Category.STATS, "SPY") is not None


def test_clear_expired_and_invalidate(clock):
    cache = MarketDataCache(TTL, clock=clock)
    cache.set(Category.LIQUIDITY, "SPY", LiquidityMetrics(), "alpaca")
    cache.set(Category.OPTIONS, "SPY", None, "tradier")
    cache.set(Category.OPTIONS, "QQQ", None, "tradier")

    clock.advance(120)
    assert cache.clear_expired() == 1

    cache.invalidate("spy")
    assert cache.get_stats()["memory_entries"] == 1
    cache.invalidate()
    assert cache.get_stats()["memory_entries"] == 0
