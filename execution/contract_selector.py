"""
Option contract selection for paper executions.

Expiry is chosen from the signal timeframe, strike from the underlying price.
All date arithmetic is anchored to the decision timestamp in US/Eastern so
that selection is reproducible.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from configs.engine_config import ExecutionConfig
from contracts.enums import Direction, DteBucket, OptionType
from utils.time import to_eastern

FRIDAY = 4


@dataclass(frozen=True)
class ContractSpec:
    option_type: OptionType
    strike: float
    expiry: str
    dte: int
    dte_bucket: DteBucket


def option_type_for(direction: Direction) -> OptionType:
    return OptionType.CALL if direction == Direction.LONG else OptionType.PUT


def days_to_friday(as_of: datetime) -> int:
    """Calendar days until the coming Friday; 0 on a Friday."""
    weekday = to_eastern(as_of).weekday()
    return (FRIDAY - weekday) % 7


def select_dte(timeframe_minutes: int, as_of: datetime, config: ExecutionConfig) -> int:
    if timeframe_minutes <= config.same_day_max_timeframe:
        return 0
    if timeframe_minutes <= config.weekly_max_timeframe:
        return days_to_friday(as_of)
    return config.monthly_base_days + to_eastern(as_of).day % 16


def dte_bucket(dte: int) -> DteBucket:
    if dte == 0:
        return DteBucket.ZERO_DTE
    if dte <= 7:
        return DteBucket.WEEKLY
    if dte <= 45:
        return DteBucket.MONTHLY
    return DteBucket.LEAP


def strike_increment(price: float) -> float:
    if price < 50:
        return 0.5
    if price < 200:
        return 1.0
    if price < 500:
        return 5.0
    return 10.0


def select_strike(price: float, option_type: OptionType, offset_increments: int = 0) -> float:
    """Nearest listed strike, shifted out of the money by `offset_increments`."""
    if price <= 0:
        raise ValueError(f"underlying price must be positive, got {price}")
    increment = strike_increment(price)
    atm = round(price / increment) * increment
    shift = offset_increments * increment
    strike = atm + shift if option_type == OptionType.CALL else atm - shift
    return round(max(strike, increment), 2)


def expiry_date(as_of: datetime, dte: int) -> str:
    return (to_eastern(as_of).date() + timedelta(days=dte)).isoformat()


def select_contract(
    direction: Direction,
    timeframe_minutes: int,
    underlying_price: float,
    as_of: datetime,
    config: ExecutionConfig
) -> ContractSpec:
    option_type = option_type_for(direction)
    dte = select_dte(timeframe_minutes, as_of, config)
    return ContractSpec(
        option_type=option_type,
        strike=select_strike(underlying_price, option_type, config.strike_offset_increments),
        expiry=expiry_date(as_of, dte),
        dte=dte,
        dte_bucket=dte_bucket(dte),
    )
