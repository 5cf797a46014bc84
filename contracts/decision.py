"""
Decision contracts: the built context, the not-ready result, gate results and
the immutable Decision Packet that is the unit of audit and replay.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from contracts.enums import Action, Direction, Source
from contracts.fragments import AlignmentData, ExpertData, RegimeData, StructureData
from contracts.market import MarketSnapshot


@dataclass(frozen=True)
class DecisionContext:
    """
    Consistent view of one symbol's fresh fragments at `built_at`.

    Produced only by ContextStore.build when the completeness rule holds.
    """
    symbol: str
    built_at: datetime
    expert_source: Source
    expert: ExpertData
    regime: Optional[RegimeData] = None
    alignment: Optional[AlignmentData] = None
    structure: Optional[StructureData] = None
    price: Optional[float] = None
    source_timestamps: Tuple[Tuple[str, str], ...] = ()
    completeness: float = 1.0

    ready = True

    @property
    def direction(self) -> Direction:
        return self.expert.direction

    @property
    def sources_used(self) -> Tuple[str, ...]:
        return tuple(s for s, _ in self.source_timestamps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "built_at": self.built_at.isoformat(),
            "expert_source": self.expert_source.value,
            "expert": self.expert.model_dump(mode="json"),
            "regime": self.regime.model_dump(mode="json") if self.regime else None,
            "alignment": self.alignment.model_dump(mode="json") if self.alignment else None,
            "structure": self.structure.model_dump(mode="json") if self.structure else None,
            "price": self.price,
            "source_timestamps": {s: ts for s, ts in self.source_timestamps},
            "completeness": self.completeness,
        }


@dataclass(frozen=True)
class NotReady:
    """Normal 'waiting for more data' result. Not an error."""
    symbol: str
    missing: Tuple[str, ...]
    stale: Tuple[str, ...]
    missing_sections: Tuple[str, ...]
    reason: str
    checked_at: datetime

    ready = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "ready": False,
            "missing": list(self.missing),
            "stale": list(self.stale),
            "missing_sections": list(self.missing_sections),
            "reason": self.reason,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class GateResult:
    name: str
    passed: bool
    score: float
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "score": self.score,
            "reason": self.reason,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class ConfidenceBreakdown:
    regime: float
    expert: float
    market: float
    structural: float
    alignment: Optional[float]
    weights: Dict[str, float]
    total: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime,
            "expert": self.expert,
            "alignment": self.alignment,
            "market": self.market,
            "structural": self.structural,
            "weights": dict(self.weights),
            "total": self.total,
        }


@dataclass(frozen=True)
class SizeBreakdown:
    base: float
    quality: float
    timeframe: float
    session: float
    phase_boost: float
    phase_cap: float
    volatility_cap: float
    raw: float
    final: float

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class DecisionPacket:
    """
    Immutable decision record.

    `decision_id` is the SHA-256 of the canonical content, so identical
    (context, snapshot, config) inputs produce identical packets.
    """
    decision_id: str
    symbol: str
    action: Action
    direction: Direction
    confidence_score: float
    confidence_breakdown: ConfidenceBreakdown
    size_multiplier: float
    size_breakdown: Optional[SizeBreakdown]
    gate_results: Tuple[GateResult, ...]
    reasons: Tuple[str, ...]
    session: str
    context: DecisionContext
    snapshot: MarketSnapshot
    engine_version: str
    config_hash: str
    timestamp: datetime

    @property
    def all_gates_passed(self) -> bool:
        return all(g.passed for g in self.gate_results)

    def gate(self, name: str) -> Optional[GateResult]:
        for g in self.gate_results:
            if g.name == name:
                return g
        return None

    def content_dict(self) -> Dict[str, Any]:
        """Everything except the id."""
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "direction": self.direction.value,
            "confidence_score": self.confidence_score,
            "confidence_breakdown": self.confidence_breakdown.to_dict(),
            "size_multiplier": self.size_multiplier,
            "size_breakdown": self.size_breakdown.to_dict() if self.size_breakdown else None,
            "gate_results": [g.to_dict() for g in self.gate_results],
            "reasons": list(self.reasons),
            "session": self.session,
            "context": self.context.to_dict(),
            "snapshot": self.snapshot.to_dict(),
            "engine_version": self.engine_version,
            "config_hash": self.config_hash,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        d = {"decision_id": self.decision_id}
        d.update(self.content_dict())
        return d


def content_hash(content: Dict[str, Any]) -> str:
    """SHA-256 over canonical JSON (sorted keys, no whitespace)."""
    raw = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
