"""Result cache -- memory + disk TTL cache for computed risk histories.

Keys are "{ASSET}_{days}" for bounded windows and "{ASSET}_all" for the
unbounded ("current") request. Disk is authoritative across restarts;
memory is only a warm copy. Unreadable disk entries are deleted and
treated as misses.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from core.bus import AsyncIOBus
from core.config import CacheConfig
from core.data.store import RISK_CACHE, Store
from core.duration import parse_duration
from core.models.events import Event, EventTypes
from core.models.risk import RiskCacheEntry, RiskHistoryPoint
from core.time_context import TimeContext

logger = logging.getLogger(__name__)


def cache_key(asset_id: str, days: int | None) -> str:
    return f"{asset_id.upper()}_{'all' if days is None else days}"


class RiskResultCache:
    """Two-tier cache of risk histories, keyed by (asset, requested range)."""

    def __init__(
        self,
        store: Store,
        bus: AsyncIOBus,
        time_context: TimeContext,
        config: CacheConfig | None = None,
    ) -> None:
        config = config or CacheConfig()
        self._store = store
        self._bus = bus
        self._time = time_context
        self._current_ttl = parse_duration(config.current_ttl)
        self._history_ttl = parse_duration(config.history_ttl)
        self._memory: dict[str, RiskCacheEntry] = {}
        self._lock = asyncio.Lock()

        bus.subscribe(EventTypes.PRICES_UPDATED, self._on_prices_updated)

    def ttl_for(self, days: int | None) -> timedelta:
        return self._current_ttl if days is None else self._history_ttl

    async def get(self, asset_id: str, days: int | None) -> list[RiskHistoryPoint] | None:
        """Cached history, or None on a miss or an expired entry."""
        key = cache_key(asset_id, days)
        async with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                if self._is_valid(entry, days):
                    logger.debug("Risk cache hit (memory): %s", key)
                    return entry.history
                del self._memory[key]

            entry = self._store.read_json(RISK_CACHE, f"{key}.json", RiskCacheEntry)
            if entry is None:
                return None
            if not self._is_valid(entry, days):
                logger.debug("Risk cache entry expired: %s", key)
                return None

            logger.debug("Risk cache hit (disk): %s", key)
            self._memory[key] = entry
            return entry.history

    async def store(self, asset_id: str, days: int | None, history: list[RiskHistoryPoint]) -> None:
        key = cache_key(asset_id, days)
        entry = RiskCacheEntry(history=history, timestamp=self._time.now(), days=days)
        async with self._lock:
            self._store.write_json(RISK_CACHE, f"{key}.json", entry)
            self._memory[key] = entry

    async def clear(self, asset_id: str) -> int:
        """Remove every entry for one asset from both tiers. Returns files deleted."""
        prefix = f"{asset_id.upper()}_"
        async with self._lock:
            for key in [k for k in self._memory if k.startswith(prefix)]:
                del self._memory[key]
            deleted = self._store.delete_prefix(RISK_CACHE, prefix)
        logger.info("Cleared risk cache for %s (%d file(s))", asset_id.upper(), deleted)
        await self._bus.publish(Event(
            type=EventTypes.CACHE_CLEARED,
            source="result_cache",
            payload={"asset_id": asset_id.upper()},
        ))
        return deleted

    async def clear_all(self) -> None:
        async with self._lock:
            self._memory.clear()
            self._store.clear_dir(RISK_CACHE)
        logger.info("Cleared entire risk cache")
        await self._bus.publish(Event(
            type=EventTypes.CACHE_CLEARED,
            source="result_cache",
            payload={"all": True},
        ))

    def memory_keys(self) -> list[str]:
        return sorted(self._memory)

    def _is_valid(self, entry: RiskCacheEntry, days: int | None) -> bool:
        return self._time.now() - entry.timestamp < self.ttl_for(days)

    async def _on_prices_updated(self, event: Event) -> None:
        asset_id = event.payload.get("asset_id")
        if asset_id:
            await self.clear(asset_id)
