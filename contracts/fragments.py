"""
Context Fragment Contract (Pydantic).

A fragment is one normalized update from one upstream source about one
symbol. It carries exactly one payload section, and the section must match
the source tag. Validation happens here, at the boundary; anything that gets
past `ContextFragment.parse` is safe to merge.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from contracts.enums import (
    Bias,
    Direction,
    ExecutionQuality,
    ExpertQuality,
    Source,
    TrendState,
    VolatilityRegime,
)
from utils.errors import ValidationError
from utils.time import to_utc

# Upper bound of the expert AI score scale
AI_SCORE_MAX = 10.5

PHASE_NAMES = {
    1: "ACCUMULATION",
    2: "MARKUP",
    3: "DISTRIBUTION",
    4: "MARKDOWN",
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RegimeData(_Frozen):
    """Market cycle phase as assessed upstream."""
    phase: int = Field(..., ge=1, le=4)
    phase_name: Optional[str] = None
    bias: Bias
    confidence: float = Field(..., ge=0.0, le=100.0)
    volatility: VolatilityRegime

    @model_validator(mode="before")
    @classmethod
    def default_phase_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("phase_name"):
            phase = data.get("phase")
            if isinstance(phase, int) and phase in PHASE_NAMES:
                data = {**data, "phase_name": PHASE_NAMES[phase]}
        return data


class ExpertData(_Frozen):
    """Directional call from an expert signal source."""
    direction: Direction
    quality: ExpertQuality
    ai_score: float = Field(..., ge=0.0, le=AI_SCORE_MAX)
    timeframe: str = Field(..., pattern=r"^\d+$", description="Signal timeframe in minutes")
    rr1: Optional[float] = Field(None, ge=0.0)
    rr2: Optional[float] = Field(None, ge=0.0)
    # Names of the signal components that fired
    components: Tuple[str, ...] = ()

    @field_validator("timeframe", mode="before")
    @classmethod
    def coerce_timeframe(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def timeframe_minutes(self) -> int:
        return int(self.timeframe)


class AlignmentData(_Frozen):
    """Multi-timeframe trend alignment."""
    tf_states: Dict[str, TrendState] = Field(default_factory=dict)
    bullish_pct: float = Field(..., ge=0.0, le=100.0)
    bearish_pct: float = Field(..., ge=0.0, le=100.0)

    @model_validator(mode="after")
    def check_total(self) -> "AlignmentData":
        if self.bullish_pct + self.bearish_pct > 100.0 + 1e-6:
            raise ValueError(
                f"bullish_pct + bearish_pct exceeds 100 "
                f"({self.bullish_pct} + {self.bearish_pct})"
            )
        return self

    def pct_for(self, direction: Direction) -> float:
        return self.bullish_pct if direction == Direction.LONG else self.bearish_pct


class StructureData(_Frozen):
    """Setup validity from the structure/execution source."""
    valid_setup: bool
    liquidity_ok: bool
    execution_quality: ExecutionQuality


Payload = Union[RegimeData, ExpertData, AlignmentData, StructureData]

_SECTIONS = ("regime", "expert", "alignment", "structure")


class ContextFragment(_Frozen):
    """
    Normalized update from one source about one symbol.

    Immutable once created.
    """
    source: Source
    symbol: str = Field(..., min_length=1, max_length=20)
    received_at: datetime
    price: Optional[float] = Field(None, gt=0.0)
    exchange: Optional[str] = None

    regime: Optional[RegimeData] = None
    expert: Optional[ExpertData] = None
    alignment: Optional[AlignmentData] = None
    structure: Optional[StructureData] = None

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol is blank")
        return v

    @field_validator("received_at")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return to_utc(v)

    @model_validator(mode="after")
    def check_payload(self) -> "ContextFragment":
        present = [s for s in _SECTIONS if getattr(self, s) is not None]
        if len(present) != 1:
            raise ValueError(
                f"fragment must carry exactly one payload section, got {present or 'none'}"
            )
        expected = self.source.section
        if present[0] != expected:
            raise ValueError(
                f"source {self.source.value} carries '{expected}' data, got '{present[0]}'"
            )
        return self

    @property
    def section(self) -> str:
        return self.source.section

    @property
    def payload(self) -> Payload:
        return getattr(self, self.section)

    @classmethod
    def parse(cls, raw: Dict[str, Any]) -> "ContextFragment":
        """Validate a normalized dict into a fragment or raise ValidationError."""
        if not isinstance(raw, dict):
            raise ValidationError(f"fragment must be a mapping, got {type(raw).__name__}")
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(
                f"malformed fragment from {raw.get('source', 'UNKNOWN')}: {len(errors)} error(s)",
                errors=errors,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
