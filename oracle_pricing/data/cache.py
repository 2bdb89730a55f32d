"""Two-tier caching with TTL, LRU eviction and persistence."""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar
import logging

from ..core.exceptions import StorageError
from .models import CacheEntry, CacheStats, OracleSource, PriceQuoteKey
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CacheConfig:
    """Configuration for one cache instance."""

    prefix: str
    ttl: float = 300  # seconds
    max_memory_entries: int = 1000


class EnhancedCache(Generic[T]):
    """Memory tier in front of a persistent key-value store.

    Memory entries keep the timestamp they were written with, including
    entries warmed from the persistent tier, so the memory tier never holds
    anything fresher than what was persisted. Values must be JSON
    serialisable.
    """

    def __init__(self, prefix: str, ttl: float, store: Optional[KeyValueStore] = None,
                 max_memory_entries: int = 1000, clock: Callable[[], float] = time.time):
        """Initialize the cache.

        Args:
            prefix: Namespace for keys in the persistent store
            ttl: Time to live in seconds
            store: Persistent tier, or None for a memory-only cache
            max_memory_entries: Memory tier capacity
            clock: Wall-clock time source in seconds
        """
        self.prefix = prefix
        self.ttl = ttl
        self.store = store
        self.max_memory_entries = max_memory_entries
        self._clock = clock

        self._memory_cache: Dict[str, CacheEntry[T]] = {}
        self._cache_lock = asyncio.Lock()

        self._stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
        }

    @classmethod
    def from_config(cls, config: CacheConfig, store: Optional[KeyValueStore] = None,
                    clock: Callable[[], float] = time.time) -> 'EnhancedCache':
        return cls(config.prefix, config.ttl, store, config.max_memory_entries, clock)

    def _storage_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[T]:
        """Get a fresh value, or None on miss."""
        async with self._cache_lock:
            now = self._clock()

            entry = self._memory_cache.get(key)
            if entry is not None:
                if entry.is_fresh(now, self.ttl):
                    entry.access()
                    self._stats['hits'] += 1
                    return entry.value
                del self._memory_cache[key]

            stored = await self._read_persistent(key)
            if stored is not None:
                if stored.is_fresh(now, self.ttl):
                    self._insert_memory(key, CacheEntry(value=stored.value, timestamp=stored.timestamp))
                    self._stats['hits'] += 1
                    return stored.value
                await self._remove_persistent(key)

            self._stats['misses'] += 1
            return None

    async def set(self, key: str, value: T) -> bool:
        """Set a value in both tiers.

        Returns:
            True if the persistent write succeeded (or there is no store)
        """
        async with self._cache_lock:
            entry = CacheEntry(value=value, timestamp=self._clock())
            self._insert_memory(key, entry)
            return await self._persist(key, entry)

    async def delete(self, key: str) -> bool:
        """Delete a key from both tiers."""
        async with self._cache_lock:
            existed = self._memory_cache.pop(key, None) is not None
            if await self._remove_persistent(key):
                existed = True
            return existed

    async def clear(self) -> int:
        """Clear all entries of this cache.

        Returns:
            Number of distinct keys cleared
        """
        async with self._cache_lock:
            cleared = set(self._memory_cache)
            self._memory_cache.clear()

            if self.store is not None:
                try:
                    for storage_key in await self.store.iter_keys(f"{self.prefix}:"):
                        await self.store.remove(storage_key)
                        cleared.add(storage_key[len(self.prefix) + 1:])
                except StorageError as e:
                    logger.warning(f"Failed to clear persistent entries for {self.prefix}: {e}")

            return len(cleared)

    async def stats(self) -> CacheStats:
        """Get cache statistics."""
        async with self._cache_lock:
            timestamps = [entry.timestamp for entry in self._memory_cache.values()]

            storage_entries = 0
            if self.store is not None:
                try:
                    storage_entries = await self.store.count(f"{self.prefix}:")
                except StorageError as e:
                    logger.warning(f"Failed to count persistent entries for {self.prefix}: {e}")

            total_requests = self._stats['hits'] + self._stats['misses']
            hit_rate = self._stats['hits'] / total_requests if total_requests > 0 else 0.0

            return CacheStats(
                memory_entries=len(self._memory_cache),
                storage_entries=storage_entries,
                hit_rate=hit_rate,
                oldest_entry=min(timestamps) if timestamps else None,
                newest_entry=max(timestamps) if timestamps else None,
                hits=self._stats['hits'],
                misses=self._stats['misses'],
                evictions=self._stats['evictions']
            )

    def _insert_memory(self, key: str, entry: CacheEntry[T]):
        if key not in self._memory_cache and len(self._memory_cache) >= self.max_memory_entries:
            self._evict_least_recently_used()
        self._memory_cache[key] = entry

    def _evict_least_recently_used(self):
        """Evict the oldest entry; ties go to the entry with fewest hits."""
        if not self._memory_cache:
            return
        oldest_key = min(
            self._memory_cache,
            key=lambda k: (self._memory_cache[k].timestamp, self._memory_cache[k].hits)
        )
        del self._memory_cache[oldest_key]
        self._stats['evictions'] += 1
        logger.debug(f"Evicted {oldest_key} from {self.prefix} memory cache")

    async def _read_persistent(self, key: str) -> Optional[CacheEntry[T]]:
        if self.store is None:
            return None

        storage_key = self._storage_key(key)
        try:
            raw = await self.store.get(storage_key)
        except StorageError as e:
            logger.warning(f"Cache storage read error for key {key}: {e}")
            return None

        if raw is None:
            return None

        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding corrupt cache entry {storage_key}: {e}")
            await self._remove_persistent(key)
            return None

    async def _remove_persistent(self, key: str) -> bool:
        if self.store is None:
            return False
        try:
            return await self.store.remove(self._storage_key(key))
        except StorageError as e:
            logger.warning(f"Cache storage remove error for key {key}: {e}")
            return False

    async def _persist(self, key: str, entry: CacheEntry[T]) -> bool:
        if self.store is None:
            return True

        try:
            payload = json.dumps(entry.to_dict())
        except (TypeError, ValueError) as e:
            logger.warning(f"Value for {key} is not serialisable, kept in memory only: {e}")
            return False

        storage_key = self._storage_key(key)
        try:
            await self.store.set(storage_key, payload)
            return True
        except StorageError as e:
            logger.warning(f"Cache storage write error for key {key}: {e}")

        removed = await self._cleanup_storage()
        if not removed:
            return False

        try:
            await self.store.set(storage_key, payload)
            return True
        except StorageError as e:
            logger.warning(f"Cache storage retry failed for key {key}: {e}")
            return False

    async def _cleanup_storage(self) -> int:
        """Remove this cache's expired or unreadable persistent entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        try:
            for storage_key in await self.store.iter_keys(f"{self.prefix}:"):
                raw = await self.store.get(storage_key)
                try:
                    expired = raw is None or not CacheEntry.from_dict(json.loads(raw)).is_fresh(now, self.ttl)
                except (ValueError, KeyError, TypeError):
                    expired = True
                if expired:
                    await self.store.remove(storage_key)
                    removed += 1
        except StorageError as e:
            logger.warning(f"Cache cleanup error for {self.prefix}: {e}")

        if removed:
            logger.debug(f"Cleaned up {removed} expired {self.prefix} entries")
        return removed


def cache_key_for_price(key: PriceQuoteKey) -> str:
    """Generate cache key for an asset price."""
    return str(key)


def cache_key_for_fx(network: str, from_currency: str, to_currency: str) -> str:
    """Generate cache key for an FX multiplier."""
    return f"{network}:fx:{from_currency.upper()}:{to_currency.upper()}"


def cache_key_for_assets(network: str, source: OracleSource) -> str:
    """Generate cache key for an oracle's asset list."""
    return f"{network}:assets:{source.value}"
