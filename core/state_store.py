"""
Keyed state with an atomic read-modify-write contract.

Both the per-symbol context state and the per-provider rate counters live
behind this interface, so a single-process map and a shared external store
are interchangeable.

Contract:
- `update(ns, key, fn)` calls `fn(current)` under mutual exclusion for
  (ns, key) and stores its return value; returning None deletes the key.
- Values are treated as immutable snapshots. Writers replace, never mutate.
- `get` never observes a value mid-update.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Updater = Callable[[Optional[Any]], Optional[Any]]


class StateStore(ABC):

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def update(self, namespace: str, key: str, fn: Updater) -> Optional[Any]:
        """Atomically replace the value at (namespace, key) with fn(current)."""
        ...

    @abstractmethod
    async def keys(self, namespace: str) -> List[str]:
        ...

    async def delete(self, namespace: str, key: str) -> None:
        await self.update(namespace, key, lambda _: None)


class InMemoryStateStore(StateStore):
    """Single-process implementation: one asyncio.Lock per key."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = defaultdict(dict)
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._writes = 0

    def _lock_for(self, namespace: str, key: str) -> asyncio.Lock:
        lock = self._locks.get((namespace, key))
        if lock is None:
            lock = self._locks.setdefault((namespace, key), asyncio.Lock())
        return lock

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        async with self._lock_for(namespace, key):
            return self._data[namespace].get(key)

    async def update(self, namespace: str, key: str, fn: Updater) -> Optional[Any]:
        async with self._lock_for(namespace, key):
            current = self._data[namespace].get(key)
            new = fn(current)
            if new is None:
                self._data[namespace].pop(key, None)
            else:
                self._data[namespace][key] = new
            self._writes += 1
            return new

    async def keys(self, namespace: str) -> List[str]:
        return sorted(self._data[namespace].keys())

    def get_stats(self) -> Dict[str, Any]:
        return {
            "namespaces": {ns: len(v) for ns, v in self._data.items()},
            "locks": len(self._locks),
            "writes": self._writes,
        }
