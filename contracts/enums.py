from enum import Enum


class Action(str, Enum):
    """Final decision action."""
    EXECUTE = "EXECUTE"
    WAIT = "WAIT"
    SKIP = "SKIP"


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class Bias(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"


class Source(str, Enum):
    """Upstream producer tags accepted by the context store."""
    SATY_PHASE = "SATY_PHASE"
    ULTIMATE_OPTIONS = "ULTIMATE_OPTIONS"
    TRADINGVIEW_SIGNAL = "TRADINGVIEW_SIGNAL"
    MTF_DOTS = "MTF_DOTS"
    STRAT_EXEC = "STRAT_EXEC"

    @property
    def section(self) -> str:
        """Context section this source populates."""
        return SOURCE_SECTIONS[self]


SOURCE_SECTIONS = {
    Source.SATY_PHASE: "regime",
    Source.ULTIMATE_OPTIONS: "expert",
    Source.TRADINGVIEW_SIGNAL: "expert",
    Source.MTF_DOTS: "alignment",
    Source.STRAT_EXEC: "structure",
}


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class ExpertQuality(str, Enum):
    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ExecutionQuality(str, Enum):
    A = "A"
    B = "B"
    C = "C"


class TrendState(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Category(str, Enum):
    """Market data categories fetched per snapshot."""
    OPTIONS = "options"
    STATS = "stats"
    LIQUIDITY = "liquidity"


class GammaBias(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class TradeVelocity(str, Enum):
    SLOW = "SLOW"
    NORMAL = "NORMAL"
    FAST = "FAST"


class OptionType(str, Enum):
    CALL = "CALL"
    PUT = "PUT"


class DteBucket(str, Enum):
    ZERO_DTE = "0DTE"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    LEAP = "LEAP"


class FillQuality(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class ExitReason(str, Enum):
    """Exit triggers, listed in evaluation priority order."""
    TARGET_2 = "TARGET_2"
    TARGET_1 = "TARGET_1"
    STOP_LOSS = "STOP_LOSS"
    THETA_DECAY = "THETA_DECAY"
    MAX_HOLD = "MAX_HOLD"
