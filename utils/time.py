# utils/time.py
from datetime import datetime, time, timezone
from typing import Callable

import pandas as pd
import pytz

EASTERN = pytz.timezone("US/Eastern")

# Regular session boundaries, US/Eastern
PREMARKET_START = time(4, 0)
MARKET_OPEN = time(9, 30)
OPENING_RANGE_END = time(10, 30)
POWER_HOUR_START = time(15, 0)
MARKET_CLOSE = time(16, 0)
AFTERHOURS_END = time(20, 0)

Clock = Callable[[], datetime]


def to_utc(ts) -> datetime:
    """
    Standardizes any timestamp to a UTC-aware datetime.
    Institutional Invariant: ALL internal comparisons must be UTC.
    """
    if ts is None:
        return None

    ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    else:
        ts = ts.tz_convert("UTC")
    return ts.to_pydatetime()


def get_now_utc() -> datetime:
    """Returns the current time in UTC."""
    return datetime.now(timezone.utc)


def to_eastern(ts) -> datetime:
    return to_utc(ts).astimezone(EASTERN)


def market_session(ts) -> str:
    """
    Classify a timestamp into a US equity session.

    PREMARKET, OPEN (first hour), MIDDAY, POWER_HOUR (last hour),
    AFTERHOURS or CLOSED (overnight and weekends).
    """
    local = to_eastern(ts)
    if local.weekday() >= 5:
        return "CLOSED"

    t = local.time()
    if PREMARKET_START <= t < MARKET_OPEN:
        return "PREMARKET"
    if MARKET_OPEN <= t < OPENING_RANGE_END:
        return "OPEN"
    if OPENING_RANGE_END <= t < POWER_HOUR_START:
        return "MIDDAY"
    if POWER_HOUR_START <= t < MARKET_CLOSE:
        return "POWER_HOUR"
    if MARKET_CLOSE <= t < AFTERHOURS_END:
        return "AFTERHOURS"
    return "CLOSED"


def isoformat(ts) -> str:
    return to_utc(ts).isoformat()
