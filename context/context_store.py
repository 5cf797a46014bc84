"""
Context Store.

Accumulates per-symbol fragments from independent sources and answers
"is there enough fresh data to decide?".

All state lives in a StateStore under one key per symbol. Every merge is a
copy-on-write replacement performed inside `StateStore.update`, so readers
only ever see whole states.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from configs.engine_config import CompletenessConfig
from contracts.decision import DecisionContext, NotReady
from contracts.enums import Source
from contracts.fragments import ContextFragment
from core.state_store import InMemoryStateStore, StateStore
from utils.errors import ConcurrencyViolation
from utils.time import Clock, get_now_utc

logger = logging.getLogger(__name__)

NAMESPACE = "context"


@dataclass(frozen=True)
class SymbolContextState:
    """Latest fragment per source for one symbol. Replaced, never mutated."""
    symbol: str
    fragments: Dict[Source, ContextFragment] = field(default_factory=dict)
    last_updated: Dict[Source, datetime] = field(default_factory=dict)
    price: Optional[float] = None
    version: int = 0


class ContextStore:

    def __init__(
        self,
        rule: CompletenessConfig,
        state_store: Optional[StateStore] = None,
        clock: Clock = get_now_utc
    ):
        self.rule = rule
        self.store = state_store or InMemoryStateStore()
        self._clock = clock

    async def update(self, fragment: ContextFragment) -> SymbolContextState:
        """
        Merge one validated fragment into its symbol's state.

        The latest arrival for a source overwrites the previous one, and
        `last_updated[source]` takes the fragment's arrival time.
        """
        source = fragment.source

        def _merge(state: Optional[SymbolContextState]) -> SymbolContextState:
            state = state or SymbolContextState(symbol=fragment.symbol)
            prev = state.last_updated.get(source)
            if prev is not None and fragment.received_at < prev:
                logger.info(
                    f"{fragment.symbol}: {source.value} fragment arrived out of order "
                    f"({fragment.received_at.isoformat()} < {prev.isoformat()}), applying in arrival order"
                )
            fragments = dict(state.fragments)
            fragments[source] = fragment
            last_updated = dict(state.last_updated)
            last_updated[source] = fragment.received_at
            price = fragment.price if fragment.price is not None else state.price
            return SymbolContextState(
                symbol=state.symbol,
                fragments=fragments,
                last_updated=last_updated,
                price=price,
                version=state.version + 1,
            )

        new_state = await self.store.update(NAMESPACE, fragment.symbol, _merge)
        logger.debug(f"{fragment.symbol}: merged {source.value} (v{new_state.version})")
        return new_state

    def _is_fresh(self, ts: datetime, now: datetime) -> bool:
        return (now - ts).total_seconds() <= self.rule.freshness_window_seconds

    async def build(self, symbol: str) -> Union[DecisionContext, NotReady]:
        """
        Return a consistent DecisionContext, or NotReady naming what is missing.

        Stale sources count as absent. Never raises for the waiting case.
        """
        symbol = symbol.strip().upper()
        now = self._clock()
        state: Optional[SymbolContextState] = await self.store.get(NAMESPACE, symbol)

        fresh: Dict[Source, ContextFragment] = {}
        stale: List[Source] = []
        if state is not None:
            for src in self.rule.tracked_sources:
                ts = state.last_updated.get(src)
                if ts is None:
                    continue
                if self._is_fresh(ts, now):
                    fresh[src] = state.fragments[src]
                else:
                    stale.append(src)

        missing = [s for s in self.rule.required_sources if s not in fresh and s not in stale]
        stale_required = [s for s in self.rule.required_sources if s in stale]
        expert_fresh = [s for s in self.rule.expert_sources if s in fresh]
        if not expert_fresh:
            missing += [s for s in self.rule.expert_sources if s not in stale]
            stale_required += [s for s in self.rule.expert_sources if s in stale]

        if missing or stale_required:
            missing_sections = []
            for s in list(self.rule.required_sources) + list(self.rule.expert_sources):
                if (s in missing or s in stale_required) and s.section not in missing_sections:
                    missing_sections.append(s.section)
            parts = []
            if missing:
                parts.append("missing " + ", ".join(s.value for s in missing))
            if stale_required:
                parts.append("stale " + ", ".join(s.value for s in stale_required))
            result = NotReady(
                symbol=symbol,
                missing=tuple(s.value for s in missing),
                stale=tuple(s.value for s in stale_required),
                missing_sections=tuple(missing_sections),
                reason=f"{symbol} not ready: " + "; ".join(parts),
                checked_at=now,
            )
            logger.debug(result.reason)
            return result

        self._check_consistency(symbol, state, fresh)

        # Most recent expert wins; ties go to the earlier configured source
        order = {s: i for i, s in enumerate(self.rule.expert_sources)}
        expert_source = max(
            expert_fresh,
            key=lambda s: (state.last_updated[s], -order[s]),
        )

        sections: Dict[str, Any] = {}
        for src in self.rule.required_sources + self.rule.optional_sources:
            frag = fresh.get(src)
            if frag is not None and frag.section not in sections:
                sections[frag.section] = frag.payload

        used = [s for s in fresh if s not in self.rule.expert_sources or s == expert_source]
        tracked = self.rule.tracked_sources
        return DecisionContext(
            symbol=symbol,
            built_at=now,
            expert_source=expert_source,
            expert=fresh[expert_source].expert,
            regime=sections.get("regime"),
            alignment=sections.get("alignment"),
            structure=sections.get("structure"),
            price=state.price,
            source_timestamps=tuple(
                (s.value, state.last_updated[s].isoformat())
                for s in sorted(used, key=lambda s: s.value)
            ),
            completeness=round(len(fresh) / len(tracked), 4) if tracked else 1.0,
        )

    @staticmethod
    def _check_consistency(symbol: str, state: SymbolContextState, fresh: Dict[Source, ContextFragment]):
        for src, frag in fresh.items():
            if frag.symbol != symbol or frag.received_at != state.last_updated.get(src):
                raise ConcurrencyViolation(
                    f"{symbol}: torn context state for {src.value} (v{state.version})"
                )

    async def sweep_expired(self) -> int:
        """Drop sources older than the freshness window. Returns count dropped."""
        now = self._clock()
        dropped = 0

        for symbol in await self.store.keys(NAMESPACE):
            removed: List[Source] = []

            def _sweep(state: Optional[SymbolContextState]) -> Optional[SymbolContextState]:
                if state is None:
                    return None
                keep = {s: ts for s, ts in state.last_updated.items() if self._is_fresh(ts, now)}
                removed.extend(s for s in state.last_updated if s not in keep)
                if not removed:
                    return state
                if not keep:
                    return None
                return SymbolContextState(
                    symbol=state.symbol,
                    fragments={s: f for s, f in state.fragments.items() if s in keep},
                    last_updated=keep,
                    price=state.price,
                    version=state.version + 1,
                )

            await self.store.update(NAMESPACE, symbol, _sweep)
            if removed:
                logger.info(f"{symbol}: swept expired sources {[s.value for s in removed]}")
            dropped += len(removed)
        return dropped

    async def completeness_stats(self, symbol: str) -> Dict[str, Any]:
        """Per-source presence and age for one symbol."""
        symbol = symbol.strip().upper()
        now = self._clock()
        state = await self.store.get(NAMESPACE, symbol)
        sources = {}
        for src in self.rule.tracked_sources:
            ts = state.last_updated.get(src) if state else None
            sources[src.value] = {
                "section": src.section,
                "present": ts is not None,
                "fresh": ts is not None and self._is_fresh(ts, now),
                "age_seconds": (now - ts).total_seconds() if ts is not None else None,
            }
        result = await self.build(symbol)
        return {
            "symbol": symbol,
            "ready": result.ready,
            "sources": sources,
            "version": state.version if state else 0,
        }

    async def symbols(self) -> List[str]:
        return await self.store.keys(NAMESPACE)

    async def clear(self, symbol: Optional[str] = None):
        targets = [symbol.strip().upper()] if symbol else await self.store.keys(NAMESPACE)
        for s in targets:
            await self.store.delete(NAMESPACE, s)
