"""
data/market_metrics.py

Provider-independent metric calculations. Providers turn their payloads
into DataFrames and call these; any metric that cannot be computed from
the data is returned as None, never as a neutral stand-in.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from configs.engine_config import MetricBands
from contracts.enums import GammaBias, TradeVelocity
from contracts.market import LiquidityMetrics, OptionsMetrics, StatsMetrics

logger = logging.getLogger(__name__)

TRADING_DAYS = 252
ATR_PERIOD = 14
RSI_PERIOD = 14

DEFAULT_BANDS = MetricBands()


def _finite(x) -> Optional[float]:
    if x is None:
        return None
    try:
        x = float(x)
    except (TypeError, ValueError):
        return None
    return x if np.isfinite(x) else None


def iv_rank(implied_vol: Optional[float], bands: MetricBands = DEFAULT_BANDS) -> Optional[float]:
    """Position of an annualized IV inside the configured low/high range, 0-100."""
    implied_vol = _finite(implied_vol)
    if implied_vol is None:
        return None
    rank = (implied_vol - bands.iv_rank_low) / (bands.iv_rank_high - bands.iv_rank_low) * 100.0
    return float(np.clip(rank, 0.0, 100.0))


def options_metrics_from_chain(chain: pd.DataFrame, bands: MetricBands = DEFAULT_BANDS) -> OptionsMetrics:
    """
    Summarize one expiration's option chain.

    Expects columns: side ('call'/'put'), strike, volume, open_interest and
    optionally iv.
    """
    if chain is None or chain.empty:
        raise ValueError("empty option chain")

    chain = chain.copy()
    for col in ("strike", "volume", "open_interest", "iv"):
        if col in chain.columns:
            chain[col] = pd.to_numeric(chain[col], errors="coerce")
    chain["side"] = chain["side"].astype(str).str.lower()

    calls = chain[chain["side"] == "call"]
    puts = chain[chain["side"] == "put"]
    call_vol = calls["volume"].fillna(0).sum()
    put_vol = puts["volume"].fillna(0).sum()
    total_vol = chain["volume"].fillna(0).sum()

    put_call_ratio = put_vol / call_vol if call_vol > 0 else None

    implied_vol = None
    if "iv" in chain.columns:
        traded = chain[(chain["volume"] > 0) & (chain["iv"] > 0)]
        if not traded.empty:
            implied_vol = (traded["iv"] * traded["volume"]).sum() / traded["volume"].sum()

    gamma_bias = None
    if put_call_ratio is not None:
        if put_call_ratio > bands.pcr_bearish:
            gamma_bias = GammaBias.NEGATIVE
        elif put_call_ratio < bands.pcr_bullish:
            gamma_bias = GammaBias.POSITIVE
        else:
            gamma_bias = GammaBias.NEUTRAL

    return OptionsMetrics(
        put_call_ratio=_finite(put_call_ratio),
        iv_percentile=iv_rank(implied_vol, bands),
        gamma_bias=gamma_bias,
        option_volume=_finite(total_vol),
        max_pain=max_pain(chain),
        implied_vol=_finite(implied_vol),
    )


def max_pain(chain: pd.DataFrame) -> Optional[float]:
    """Strike at which total in-the-money value held by option buyers is smallest."""
    oi = chain[chain["open_interest"].fillna(0) > 0]
    if oi.empty:
        return None
    strikes = np.sort(oi["strike"].dropna().unique())
    calls = oi[oi["side"] == "call"]
    puts = oi[oi["side"] == "put"]

    pain = []
    for k in strikes:
        call_pain = (np.maximum(0.0, k - calls["strike"]) * calls["open_interest"]).sum()
        put_pain = (np.maximum(0.0, puts["strike"] - k) * puts["open_interest"]).sum()
        pain.append(call_pain + put_pain)
    return float(strikes[int(np.argmin(pain))])


def stats_from_bars(bars: pd.DataFrame, lookback: int = 20) -> StatsMetrics:
    """
    Price/volatility statistics from daily bars sorted oldest first.

    Expects columns: high, low, close, volume.
    """
    if bars is None or len(bars) < ATR_PERIOD + 1:
        raise ValueError(f"need at least {ATR_PERIOD + 1} bars, got {0 if bars is None else len(bars)}")

    bars = bars[["high", "low", "close", "volume"]].apply(pd.to_numeric, errors="coerce")
    close = bars["close"]
    prev_close = close.shift(1)

    true_range = pd.concat([
        bars["high"] - bars["low"],
        (bars["high"] - prev_close).abs(),
        (bars["low"] - prev_close).abs(),
    ], axis=1).max(axis=1)
    atr = true_range.rolling(ATR_PERIOD).mean().dropna()

    atr14 = _finite(atr.iloc[-1]) if not atr.empty else None
    spike = None
    if atr14 is not None:
        baseline = atr.tail(lookback).mean()
        spike = atr14 / baseline if baseline > 0 else None

    log_returns = np.log(close / prev_close).dropna().tail(lookback)
    rv20 = float(log_returns.std(ddof=0) * np.sqrt(TRADING_DAYS) * 100.0) if len(log_returns) > 1 else None

    recent = close.dropna().tail(lookback)
    trend_slope = None
    if len(recent) >= 2 and recent.mean() > 0:
        slope = np.polyfit(np.arange(len(recent)), recent.values, 1)[0]
        trend_slope = float(np.clip(slope / recent.mean() * 100.0, -1.0, 1.0))

    delta = close.diff().dropna().tail(RSI_PERIOD)
    rsi = None
    if len(delta) == RSI_PERIOD:
        gains = delta.clip(lower=0).mean()
        losses = (-delta.clip(upper=0)).mean()
        rsi = 100.0 if losses == 0 else 100.0 - 100.0 / (1.0 + gains / losses)

    volume = _finite(bars["volume"].iloc[-1])
    avg_volume = bars["volume"].iloc[-(lookback + 1):-1].mean()
    volume_ratio = volume / avg_volume if volume is not None and avg_volume > 0 else None

    return StatsMetrics(
        atr14=atr14,
        rv20=_finite(rv20),
        trend_slope=_finite(trend_slope),
        rsi=_finite(rsi),
        volume=volume,
        volume_ratio=_finite(volume_ratio),
        volatility_spike_ratio=_finite(spike),
        last_close=_finite(close.iloc[-1]),
    )


def liquidity_from_quote(
    bid: Optional[float],
    ask: Optional[float],
    bid_size: Optional[float],
    ask_size: Optional[float],
    last_price: Optional[float] = None,
    volume_ratio: Optional[float] = None,
    shares_per_unit: float = 1.0,
    bands: MetricBands = DEFAULT_BANDS
) -> LiquidityMetrics:
    """
    Spread and depth from a top-of-book quote.

    Sizes are divided by `shares_per_unit` so that providers quoting in
    shares and in round lots land on the same depth scale.
    """
    bid, ask = _finite(bid), _finite(ask)
    bid_size, ask_size = _finite(bid_size), _finite(ask_size)

    spread_bps = None
    if bid is not None and ask is not None and bid > 0 and ask >= bid:
        mid = (bid + ask) / 2.0
        spread_bps = (ask - bid) / mid * 10000.0

    depth_score = None
    if bid_size is not None and ask_size is not None:
        total = max(0.0, bid_size + ask_size) / shares_per_unit
        depth_score = min(100.0, float(np.sqrt(total)) * 10.0)

    velocity = None
    if volume_ratio is not None:
        if volume_ratio > bands.velocity_fast:
            velocity = TradeVelocity.FAST
        elif volume_ratio < bands.velocity_slow:
            velocity = TradeVelocity.SLOW
        else:
            velocity = TradeVelocity.NORMAL

    return LiquidityMetrics(
        spread_bps=spread_bps,
        depth_score=depth_score,
        trade_velocity=velocity,
        bid=bid,
        ask=ask,
        bid_size=bid_size,
        ask_size=ask_size,
        last_price=_finite(last_price),
    )
