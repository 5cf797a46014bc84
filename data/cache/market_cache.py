"""
Market Data Cache.

In-memory TTL cache keyed by (category, symbol). Each category has its own
TTL: live quotes expire fast, slower statistics are reused longer.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from contracts.enums import Category
from utils.time import Clock, get_now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    provider: str
    stored_at: datetime


class MarketDataCache:

    def __init__(self, ttl_seconds: Dict[Category, float], clock: Clock = get_now_utc):
        self.ttl_seconds = dict(ttl_seconds)
        self._clock = clock
        self.memory_cache: Dict[Tuple[Category, str], CacheEntry] = {}
        self.lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, category: Category, symbol: str) -> Optional[CacheEntry]:
        """Return the entry if present and within its category TTL."""
        key = (category, symbol.upper())
        ttl = self.ttl_seconds.get(category, 0.0)
        with self.lock:
            entry = self.memory_cache.get(key)
            if entry is not None:
                age = (self._clock() - entry.stored_at).total_seconds()
                if age < ttl:
                    self.hits += 1
                    logger.debug(f"Cache HIT: {symbol}/{category.value} ({age:.1f}s old)")
                    return entry
                del self.memory_cache[key]
            self.misses += 1
        logger.debug(f"Cache MISS: {symbol}/{category.value}")
        return None

    def set(self, category: Category, symbol: str, data: Any, provider: str) -> CacheEntry:
        entry = CacheEntry(data=data, provider=provider, stored_at=self._clock())
        with self.lock:
            self.memory_cache[(category, symbol.upper())] = entry
        return entry

    def invalidate(self, symbol: Optional[str] = None):
        with self.lock:
            if symbol is None:
                self.memory_cache.clear()
                return
            for key in [k for k in self.memory_cache if k[1] == symbol.upper()]:
                del self.memory_cache[key]

    def clear_expired(self) -> int:
        now = self._clock()
        with self.lock:
            expired = [
                k for k, e in self.memory_cache.items()
                if (now - e.stored_at).total_seconds() >= self.ttl_seconds.get(k[0], 0.0)
            ]
            for k in expired:
                del self.memory_cache[k]
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "memory_entries": len(self.memory_cache),
                "hits": self.hits,
                "misses": self.misses,
            }
