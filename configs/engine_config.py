"""
Engine configuration schema (Pydantic).

One frozen object carries every threshold, weight, size bound, freshness
window, fallback value and provider limit. It is validated in full at
startup; nothing reads configuration mid-request.
"""

import hashlib
import json
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from contracts.enums import (
    Category,
    Direction,
    DteBucket,
    ExecutionQuality,
    ExpertQuality,
    Source,
    VolatilityRegime,
)
from contracts.fragments import AI_SCORE_MAX

SESSIONS = ("PREMARKET", "OPEN", "MIDDAY", "POWER_HOUR", "AFTERHOURS", "CLOSED")


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ThresholdsConfig(_Section):
    execute: float = Field(80.0, ge=0.0, le=100.0)
    wait: float = Field(65.0, ge=0.0, le=100.0)
    min_regime_confidence: float = Field(65.0, ge=0.0, le=100.0)
    min_ai_score: float = Field(7.0, ge=0.0, le=AI_SCORE_MAX)
    min_alignment_pct: float = Field(30.0, ge=0.0, le=100.0)
    strong_alignment_pct: float = Field(75.0, ge=0.0, le=100.0)
    min_snapshot_completeness: float = Field(0.67, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_order(self) -> "ThresholdsConfig":
        if self.wait >= self.execute:
            raise ValueError(f"wait threshold ({self.wait}) must be below execute ({self.execute})")
        if self.min_alignment_pct > self.strong_alignment_pct:
            raise ValueError("min_alignment_pct must not exceed strong_alignment_pct")
        return self


class WeightsConfig(_Section):
    regime: float = Field(0.30, ge=0.0, le=1.0)
    expert: float = Field(0.25, ge=0.0, le=1.0)
    alignment: float = Field(0.20, ge=0.0, le=1.0)
    market: float = Field(0.15, ge=0.0, le=1.0)
    structural: float = Field(0.10, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_sum(self) -> "WeightsConfig":
        total = self.regime + self.expert + self.alignment + self.market + self.structural
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"confidence weights must sum to 1.0, got {total:.6f}")
        return self

    def as_dict(self) -> Dict[str, float]:
        return self.model_dump()


class ScoringConfig(_Section):
    alignment_bonus: float = Field(1.2, ge=1.0, le=2.0)
    ai_penalty: float = Field(0.8, ge=0.0, le=1.0)
    bias_conflict_factor: float = Field(0.5, ge=0.0, le=1.0)
    execution_quality_scores: Dict[ExecutionQuality, float] = Field(
        default_factory=lambda: {
            ExecutionQuality.A: 100.0,
            ExecutionQuality.B: 75.0,
            ExecutionQuality.C: 40.0,
        }
    )
    # Failure scores, ordered by how close the check came to passing
    critical_failure_score: float = Field(0.0, ge=0.0, le=100.0)
    liquidity_failure_score: float = Field(25.0, ge=0.0, le=100.0)
    quality_failure_score: float = Field(40.0, ge=0.0, le=100.0)

    @field_validator("execution_quality_scores")
    @classmethod
    def check_quality_scores(cls, v):
        missing = [q.value for q in ExecutionQuality if q not in v]
        if missing:
            raise ValueError(f"execution_quality_scores missing {missing}")
        for q, s in v.items():
            if not 0.0 <= s <= 100.0:
                raise ValueError(f"execution quality score for {q.value} out of range: {s}")
        return v


class MarketGateConfig(_Section):
    max_spread_bps: float = Field(12.0, gt=0.0)
    max_volatility_spike: float = Field(2.5, gt=1.0)
    min_depth_score: float = Field(30.0, ge=0.0, le=100.0)
    pass_score_floor: float = Field(50.0, ge=0.0, le=100.0)


class ConfidenceTier(_Section):
    min_confidence: float = Field(..., ge=0.0, le=100.0)
    value: float = Field(..., ge=0.0)


class PhaseRule(_Section):
    allowed: List[Direction] = Field(default_factory=list)
    size_cap: float = Field(..., gt=0.0)


def _tiers(pairs):
    return [ConfidenceTier(min_confidence=c, value=v) for c, v in pairs]


class SizingConfig(_Section):
    size_min: float = Field(0.5, gt=0.0)
    size_max: float = Field(3.0, gt=0.0)
    confidence_tiers: List[ConfidenceTier] = Field(
        default_factory=lambda: _tiers([(90, 2.5), (80, 2.0), (70, 1.5), (60, 1.0), (50, 0.7)])
    )
    default_multiplier: float = Field(0.5, gt=0.0)
    quality_multipliers: Dict[ExpertQuality, float] = Field(
        default_factory=lambda: {
            ExpertQuality.EXTREME: 1.3,
            ExpertQuality.HIGH: 1.15,
            ExpertQuality.MEDIUM: 1.0,
            ExpertQuality.LOW: 0.85,
        }
    )
    timeframe_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {
            "3": 0.8, "5": 0.9, "15": 1.0, "30": 1.0, "60": 1.05, "240": 1.1,
        }
    )
    default_timeframe_multiplier: float = Field(1.0, gt=0.0)
    session_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {
            "PREMARKET": 0.5, "OPEN": 0.9, "MIDDAY": 1.0,
            "POWER_HOUR": 0.85, "AFTERHOURS": 0.5, "CLOSED": 0.5,
        }
    )
    phase_boost_tiers: List[ConfidenceTier] = Field(
        default_factory=lambda: _tiers([(90, 0.10), (80, 0.05)])
    )
    max_phase_boost: float = Field(0.10, ge=0.0, le=1.0)
    phase_rules: Dict[int, PhaseRule] = Field(
        default_factory=lambda: {
            1: PhaseRule(allowed=[Direction.LONG], size_cap=0.5),
            2: PhaseRule(allowed=[Direction.LONG, Direction.SHORT], size_cap=1.0),
            3: PhaseRule(allowed=[Direction.SHORT], size_cap=0.5),
            4: PhaseRule(allowed=[Direction.SHORT], size_cap=0.75),
        }
    )
    volatility_caps: Dict[VolatilityRegime, float] = Field(
        default_factory=lambda: {
            VolatilityRegime.LOW: 1.2,
            VolatilityRegime.NORMAL: 1.0,
            VolatilityRegime.HIGH: 0.7,
            VolatilityRegime.EXTREME: 0.4,
        }
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "SizingConfig":
        problems = []
        if self.size_min >= self.size_max:
            problems.append(f"size_min ({self.size_min}) must be below size_max ({self.size_max})")
        if set(self.phase_rules) != {1, 2, 3, 4}:
            problems.append(f"phase_rules must define phases 1-4, got {sorted(self.phase_rules)}")
        missing_vol = [v.value for v in VolatilityRegime if v not in self.volatility_caps]
        if missing_vol:
            problems.append(f"volatility_caps missing {missing_vol}")
        missing_q = [q.value for q in ExpertQuality if q not in self.quality_multipliers]
        if missing_q:
            problems.append(f"quality_multipliers missing {missing_q}")
        unknown = [s for s in self.session_multipliers if s not in SESSIONS]
        if unknown:
            problems.append(f"unknown sessions in session_multipliers: {unknown}")
        uncovered = [s for s in SESSIONS if s not in self.session_multipliers]
        if uncovered:
            problems.append(f"session_multipliers missing {uncovered}")
        for name in ("confidence_tiers", "phase_boost_tiers"):
            levels = [t.min_confidence for t in getattr(self, name)]
            if levels != sorted(levels, reverse=True):
                problems.append(f"{name} must be ordered by descending min_confidence")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    def tier_value(self, tiers: List[ConfidenceTier], confidence: float, default: float) -> float:
        for tier in tiers:
            if confidence >= tier.min_confidence:
                return tier.value
        return default


class SessionConfig(_Section):
    restricted_sessions: List[str] = Field(
        default_factory=lambda: ["PREMARKET", "AFTERHOURS", "CLOSED"]
    )

    @field_validator("restricted_sessions")
    @classmethod
    def check_sessions(cls, v):
        unknown = [s for s in v if s not in SESSIONS]
        if unknown:
            raise ValueError(f"unknown sessions: {unknown}")
        return v


class CompletenessConfig(_Section):
    required_sources: List[Source] = Field(
        default_factory=lambda: [Source.SATY_PHASE, Source.STRAT_EXEC]
    )
    expert_sources: List[Source] = Field(
        default_factory=lambda: [Source.ULTIMATE_OPTIONS, Source.TRADINGVIEW_SIGNAL]
    )
    optional_sources: List[Source] = Field(default_factory=lambda: [Source.MTF_DOTS])
    freshness_window_seconds: float = Field(300.0, gt=0.0)

    @model_validator(mode="after")
    def check_groups(self) -> "CompletenessConfig":
        if not self.expert_sources:
            raise ValueError("expert_sources must name at least one source")
        bad = [s.value for s in self.expert_sources if s.section != "expert"]
        if bad:
            raise ValueError(f"expert_sources must carry expert data: {bad}")
        groups = [set(self.required_sources), set(self.expert_sources), set(self.optional_sources)]
        for i in range(len(groups)):
            for j in range(i + 1, len(groups)):
                overlap = groups[i] & groups[j]
                if overlap:
                    raise ValueError(f"source listed in two completeness groups: {sorted(s.value for s in overlap)}")
        return self

    @property
    def tracked_sources(self) -> List[Source]:
        return list(self.required_sources) + list(self.expert_sources) + list(self.optional_sources)


class ProviderConfig(_Section):
    base_url: str
    api_key_env: Optional[str] = None
    api_key: Optional[str] = Field(None, repr=False)
    secret_key_env: Optional[str] = None
    secret_key: Optional[str] = Field(None, repr=False)
    requests_per_minute: int = Field(..., gt=0)
    requests_per_day: int = Field(..., gt=0)
    timeout_seconds: float = Field(4.0, gt=0.0)
    enabled: bool = True


def _default_providers():
    return {
        "tradier": ProviderConfig(
            base_url="https://api.tradier.com",
            api_key_env="TRADIER_API_KEY",
            requests_per_minute=60, requests_per_day=10000,
        ),
        "twelvedata": ProviderConfig(
            base_url="https://api.twelvedata.com",
            api_key_env="TWELVEDATA_API_KEY",
            requests_per_minute=8, requests_per_day=800,
        ),
        "alpaca": ProviderConfig(
            base_url="https://data.alpaca.markets",
            api_key_env="ALPACA_API_KEY", secret_key_env="ALPACA_SECRET_KEY",
            requests_per_minute=200, requests_per_day=10000,
        ),
        "marketdata": ProviderConfig(
            base_url="https://api.marketdata.app",
            api_key_env="MARKETDATA_API_KEY",
            requests_per_minute=100, requests_per_day=10000,
        ),
    }


class MetricBands(_Section):
    """Classification bands used when deriving market metrics from raw provider data."""

    pcr_bearish: float = Field(1.2, gt=0.0)
    pcr_bullish: float = Field(0.8, gt=0.0)
    velocity_fast: float = Field(1.5, gt=0.0)
    velocity_slow: float = Field(0.5, ge=0.0)
    # Annualized IV range mapped onto the 0-100 IV rank
    iv_rank_low: float = Field(0.10, gt=0.0)
    iv_rank_high: float = Field(0.40, gt=0.0)

    @model_validator(mode="after")
    def check_bands(self) -> "MetricBands":
        problems = []
        if self.pcr_bullish >= self.pcr_bearish:
            problems.append("pcr_bullish must be below pcr_bearish")
        if self.velocity_slow >= self.velocity_fast:
            problems.append("velocity_slow must be below velocity_fast")
        if self.iv_rank_low >= self.iv_rank_high:
            problems.append("iv_rank_low must be below iv_rank_high")
        if problems:
            raise ValueError("; ".join(problems))
        return self


class MarketDataConfig(_Section):
    providers: Dict[str, ProviderConfig] = Field(default_factory=_default_providers)
    metrics: MetricBands = Field(default_factory=MetricBands)
    chains: Dict[Category, List[str]] = Field(
        default_factory=lambda: {
            Category.OPTIONS: ["tradier", "marketdata"],
            Category.STATS: ["twelvedata", "marketdata"],
            Category.LIQUIDITY: ["alpaca", "marketdata"],
        }
    )
    cache_ttl_seconds: Dict[Category, float] = Field(
        default_factory=lambda: {
            Category.OPTIONS: 300.0,
            Category.STATS: 300.0,
            Category.LIQUIDITY: 60.0,
        }
    )
    category_timeout_seconds: float = Field(5.0, gt=0.0)
    stats_lookback: int = Field(20, ge=5)

    @model_validator(mode="after")
    def check_chains(self) -> "MarketDataConfig":
        problems = []
        for cat in Category:
            chain = self.chains.get(cat) or []
            if not chain:
                problems.append(f"no providers configured for category '{cat.value}'")
            unknown = [p for p in chain if p not in self.providers]
            if unknown:
                problems.append(f"category '{cat.value}' references unknown providers {unknown}")
            ttl = self.cache_ttl_seconds.get(cat)
            if ttl is None or ttl <= 0:
                problems.append(f"cache_ttl_seconds for '{cat.value}' must be positive")
        if problems:
            raise ValueError("; ".join(problems))
        return self


class PricingConfig(_Section):
    risk_free_rate: float = Field(0.05, ge=0.0, le=0.25)
    base_iv: Dict[DteBucket, float] = Field(
        default_factory=lambda: {
            DteBucket.ZERO_DTE: 0.25,
            DteBucket.WEEKLY: 0.20,
            DteBucket.MONTHLY: 0.18,
            DteBucket.LEAP: 0.15,
        }
    )
    fallback_iv: float = Field(0.30, gt=0.0)
    # Conservative fixed estimates when the analytic model cannot be used
    fallback_premium_pct: float = Field(0.02, gt=0.0, lt=1.0)
    fallback_delta: float = Field(0.5, gt=0.0, le=1.0)
    fallback_gamma: float = Field(0.02, ge=0.0)
    fallback_theta: float = Field(-0.05, le=0.0)
    fallback_vega: float = Field(0.10, ge=0.0)
    min_premium: float = Field(0.05, gt=0.0)
    min_time_years: float = Field(1.0 / (365.0 * 24.0), gt=0.0)


class FillConfig(_Section):
    spread_pct: Dict[DteBucket, List[float]] = Field(
        default_factory=lambda: {
            DteBucket.ZERO_DTE: [0.03, 0.05],
            DteBucket.WEEKLY: [0.02, 0.03],
            DteBucket.MONTHLY: [0.01, 0.02],
            DteBucket.LEAP: [0.005, 0.01],
        }
    )
    slippage_min_pct: float = Field(0.005, ge=0.0)
    slippage_max_pct: float = Field(0.02, ge=0.0)
    slippage_size_scale: float = Field(100.0, gt=0.0)
    partial_fill_threshold: int = Field(50, ge=1)
    partial_fill_ratio: float = Field(0.85, gt=0.0, le=1.0)
    commission_per_contract: float = Field(0.65, ge=0.0)
    fill_seed: int = 42

    @model_validator(mode="after")
    def check_ranges(self) -> "FillConfig":
        for bucket in DteBucket:
            rng = self.spread_pct.get(bucket)
            if not rng or len(rng) != 2 or not 0.0 <= rng[0] <= rng[1] < 1.0:
                raise ValueError(f"spread_pct for {bucket.value} must be [low, high] with 0 <= low <= high < 1")
        if self.slippage_min_pct > self.slippage_max_pct:
            raise ValueError("slippage_min_pct must not exceed slippage_max_pct")
        return self


class ExecutionConfig(_Section):
    base_contracts: int = Field(3, ge=1)
    strike_offset_increments: int = Field(0, ge=0)
    same_day_max_timeframe: int = Field(5, ge=1)
    weekly_max_timeframe: int = Field(60, ge=1)
    monthly_base_days: int = Field(30, ge=1)

    @model_validator(mode="after")
    def check_timeframes(self) -> "ExecutionConfig":
        if self.same_day_max_timeframe >= self.weekly_max_timeframe:
            raise ValueError("same_day_max_timeframe must be below weekly_max_timeframe")
        return self


class ExitConfig(_Section):
    stop_loss_pct: float = Field(0.02, gt=0.0, lt=1.0)
    target_1_pct: float = Field(0.02, gt=0.0, lt=1.0)
    target_2_pct: float = Field(0.04, gt=0.0, lt=1.0)
    theta_decay_threshold: float = Field(0.5, gt=0.0, lt=1.0)
    max_hold_minutes: Dict[DteBucket, int] = Field(
        default_factory=lambda: {
            DteBucket.ZERO_DTE: 30,
            DteBucket.WEEKLY: 240,
            DteBucket.MONTHLY: 1440,
            DteBucket.LEAP: 4320,
        }
    )
    position_timeout_seconds: float = Field(5.0, gt=0.0)
    sweep_interval_seconds: float = Field(60.0, gt=0.0)

    @model_validator(mode="after")
    def check_targets(self) -> "ExitConfig":
        if self.target_1_pct >= self.target_2_pct:
            raise ValueError("target_1_pct must be below target_2_pct")
        missing = [b.value for b in DteBucket if b not in self.max_hold_minutes]
        if missing:
            raise ValueError(f"max_hold_minutes missing {missing}")
        return self


class EngineConfig(_Section):
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    weights: WeightsConfig = Field(default_factory=WeightsConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    market_gate: MarketGateConfig = Field(default_factory=MarketGateConfig)
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    completeness: CompletenessConfig = Field(default_factory=CompletenessConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    fills: FillConfig = Field(default_factory=FillConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)

    def fingerprint(self) -> str:
        """SHA-256 of the validated settings, secrets excluded."""
        data = self.model_dump(mode="json")
        for provider in data["market_data"]["providers"].values():
            provider.pop("api_key", None)
            provider.pop("secret_key", None)
        raw = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def with_secrets(self, env: Dict[str, str]) -> "EngineConfig":
        """Copy with provider API keys resolved from `env`."""
        providers = {}
        for name, p in self.market_data.providers.items():
            update = {}
            if p.api_key_env and env.get(p.api_key_env):
                update["api_key"] = env[p.api_key_env]
            if p.secret_key_env and env.get(p.secret_key_env):
                update["secret_key"] = env[p.secret_key_env]
            providers[name] = p.model_copy(update=update) if update else p
        market_data = self.market_data.model_copy(update={"providers": providers})
        return self.model_copy(update={"market_data": market_data})
