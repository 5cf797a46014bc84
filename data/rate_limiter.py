"""
Smart Rate Limiter for Data Providers.

Fixed-window per-minute and per-day budgets per provider. Counters live in
a StateStore so that every acquire is an atomic read-modify-write, and a
shared store can enforce one budget across processes.

Acquiring never waits: an exhausted budget is reported immediately so the
caller can mark its category unavailable instead of spinning.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional

from core.state_store import InMemoryStateStore, StateStore
from utils.time import Clock, get_now_utc

logger = logging.getLogger(__name__)

NAMESPACE = "rate_limits"
MINUTE = 60
DAY = 86400


@dataclass(frozen=True)
class ProviderLimit:
    """Rate limit configuration for a data provider."""
    requests_per_minute: int = 60
    requests_per_day: int = 10000


@dataclass(frozen=True)
class WindowCounters:
    minute_start: float
    minute_count: int
    day_start: float
    day_count: int


class SmartRateLimiter:
    """
    Per-provider budget tracking.

    Features:
    - Minute and day windows per provider
    - Non-blocking try_acquire
    - Provider-specific configurations
    """

    DEFAULT_LIMIT = ProviderLimit(30, 5000)

    def __init__(
        self,
        limits: Optional[Dict[str, ProviderLimit]] = None,
        state_store: Optional[StateStore] = None,
        clock: Clock = get_now_utc
    ):
        self.limits: Dict[str, ProviderLimit] = {
            k.lower(): v for k, v in (limits or {}).items()
        }
        self.store = state_store or InMemoryStateStore()
        self._clock = clock

    def _limit(self, provider: str) -> ProviderLimit:
        return self.limits.get(provider, self.DEFAULT_LIMIT)

    @staticmethod
    def _roll(state: Optional[WindowCounters], now: float) -> WindowCounters:
        """Start fresh windows where the old ones have elapsed."""
        if state is None:
            return WindowCounters(now, 0, now, 0)
        if now - state.day_start >= DAY:
            state = replace(state, day_start=now, day_count=0)
        if now - state.minute_start >= MINUTE:
            state = replace(state, minute_start=now, minute_count=0)
        return state

    async def try_acquire(self, provider: str, tokens: int = 1) -> bool:
        """
        Consume budget for one request if both windows allow it.

        Returns False without consuming anything when either budget is spent.
        """
        provider = provider.lower()
        limit = self._limit(provider)
        now = self._clock().timestamp()
        outcome = {}

        def _consume(state: Optional[WindowCounters]) -> WindowCounters:
            state = self._roll(state, now)
            if state.day_count + tokens > limit.requests_per_day:
                outcome["denied"] = "daily"
                return state
            if state.minute_count + tokens > limit.requests_per_minute:
                outcome["denied"] = "minute"
                return state
            return replace(
                state,
                minute_count=state.minute_count + tokens,
                day_count=state.day_count + tokens,
            )

        await self.store.update(NAMESPACE, provider, _consume)

        denied = outcome.get("denied")
        if denied == "daily":
            logger.error(
                f"RateLimiter: {provider} daily limit "
                f"({limit.requests_per_day}) exhausted"
            )
            return False
        if denied == "minute":
            logger.warning(
                f"RateLimiter: {provider} per-minute limit "
                f"({limit.requests_per_minute}) reached"
            )
            return False
        return True

    async def get_status(self, provider: str) -> Dict:
        """Get current rate limit status for a provider."""
        provider = provider.lower()
        limit = self._limit(provider)
        state = self._roll(
            await self.store.get(NAMESPACE, provider),
            self._clock().timestamp()
        )
        return {
            "provider": provider,
            "minute_used": state.minute_count,
            "requests_per_minute": limit.requests_per_minute,
            "daily_used": state.day_count,
            "daily_limit": limit.requests_per_day,
        }

    async def get_all_status(self) -> Dict[str, Dict]:
        """Get status of all configured providers."""
        return {p: await self.get_status(p) for p in self.limits}
