"""
Paper trading records.

ExecutionRecord opens a simulated position; ExitRecord closes it. Neither is
ever edited after creation.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict

from contracts.enums import DteBucket, Direction, ExitReason, FillQuality, OptionType
from utils.time import to_utc


@dataclass(frozen=True)
class Greeks:
    """Per-contract sensitivities. Theta is per calendar day, vega per vol point."""
    delta: float
    gamma: float
    theta: float
    vega: float
    iv: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Greeks":
        return cls(**{k: float(data[k]) for k in ("delta", "gamma", "theta", "vega", "iv")})


@dataclass(frozen=True)
class ExecutionRecord:
    execution_id: str
    decision_id: str
    symbol: str
    direction: Direction
    option_type: OptionType
    strike: float
    expiry: str
    dte: int
    dte_bucket: DteBucket
    contracts_requested: int
    filled_contracts: int
    fill_quality: FillQuality
    entry_price: float
    theoretical_price: float
    underlying_at_entry: float
    entry_greeks: Greeks
    pricing_fallback_used: bool
    spread_cost: float
    slippage_cost: float
    commission: float
    risk_amount: float
    stop_loss: float
    target_1: float
    target_2: float
    opened_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["direction"] = self.direction.value
        d["option_type"] = self.option_type.value
        d["dte_bucket"] = self.dte_bucket.value
        d["fill_quality"] = self.fill_quality.value
        d["entry_greeks"] = self.entry_greeks.to_dict()
        d["opened_at"] = self.opened_at.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        d = dict(data)
        d["direction"] = Direction(d["direction"])
        d["option_type"] = OptionType(d["option_type"])
        d["dte_bucket"] = DteBucket(d["dte_bucket"])
        d["fill_quality"] = FillQuality(d["fill_quality"])
        d["entry_greeks"] = Greeks.from_dict(d["entry_greeks"])
        d["opened_at"] = to_utc(d["opened_at"])
        return cls(**d)


@dataclass(frozen=True)
class PnLBreakdown:
    """Gross P&L split by Greek. Components sum to gross."""
    delta: float
    iv: float
    theta: float
    gamma: float

    @property
    def total(self) -> float:
        return self.delta + self.iv + self.theta + self.gamma

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class TradeCosts:
    commission: float
    spread: float
    slippage: float

    @property
    def total(self) -> float:
        return self.commission + self.spread + self.slippage

    def to_dict(self) -> Dict[str, float]:
        d = asdict(self)
        d["total"] = self.total
        return d


@dataclass(frozen=True)
class ExitRecord:
    execution_id: str
    exit_time: datetime
    exit_price: float
    exit_theoretical_price: float
    underlying_at_exit: float
    exit_reason: ExitReason
    exit_greeks: Greeks
    pnl_gross: float
    pnl_net: float
    hold_time_seconds: float
    attribution: PnLBreakdown
    costs: TradeCosts
    r_multiple: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "exit_time": self.exit_time.isoformat(),
            "exit_price": self.exit_price,
            "exit_theoretical_price": self.exit_theoretical_price,
            "underlying_at_exit": self.underlying_at_exit,
            "exit_reason": self.exit_reason.value,
            "exit_greeks": self.exit_greeks.to_dict(),
            "pnl_gross": self.pnl_gross,
            "pnl_net": self.pnl_net,
            "hold_time_seconds": self.hold_time_seconds,
            "attribution": self.attribution.to_dict(),
            "costs": self.costs.to_dict(),
            "r_multiple": self.r_multiple,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExitRecord":
        costs = data["costs"]
        return cls(
            execution_id=data["execution_id"],
            exit_time=to_utc(data["exit_time"]),
            exit_price=float(data["exit_price"]),
            exit_theoretical_price=float(data["exit_theoretical_price"]),
            underlying_at_exit=float(data["underlying_at_exit"]),
            exit_reason=ExitReason(data["exit_reason"]),
            exit_greeks=Greeks.from_dict(data["exit_greeks"]),
            pnl_gross=float(data["pnl_gross"]),
            pnl_net=float(data["pnl_net"]),
            hold_time_seconds=float(data["hold_time_seconds"]),
            attribution=PnLBreakdown(**{k: float(data["attribution"][k]) for k in ("delta", "iv", "theta", "gamma")}),
            costs=TradeCosts(
                commission=float(costs["commission"]),
                spread=float(costs["spread"]),
                slippage=float(costs["slippage"]),
            ),
            r_multiple=float(data["r_multiple"]),
        )
