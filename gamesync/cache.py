"""
Short-lived read cache for account libraries.

Provides:
- TTL-based freshness (default 600s); stale entries are never served
- Per-key locks: unrelated accounts never contend
- Loader runs outside any lock, so one slow load cannot block other keys
- Explicit lifecycle (init_cache / close_cache) instead of ambient state
- SyncService drops an account's entry after each successful sync;
  register_cache_invalidation_handlers does the same for caches it does not own

Usage:
    from gamesync.cache import init_cache

    cache = init_cache(ttl_seconds=600)
    items = await cache.get_or_load(account_id, lambda: store.get_items(account_id))
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from gamesync.config import config
from gamesync.events import EventBus, SyncEvent
from gamesync.observability import get_logger

logger = get_logger(__name__)

Loader = Callable[[], Awaitable[Any]]


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "evictions": self.evictions,
            "hit_rate_percent": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.invalidations = 0
        self.evictions = 0


class LibraryCache:
    """
    In-process TTL cache keyed by account id.

    Each entry is (value, loaded_at). The per-key lock only guards the
    check and the write around the entry map.
    """

    def __init__(
        self,
        ttl_seconds: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.cache.ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._invalidated_at: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._stats = CacheStats()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _is_fresh(self, loaded_at: float) -> bool:
        return self._clock() - loaded_at < self.ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value if fresh; evict and return None if stale."""
        async with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            value, loaded_at = entry
            if not self._is_fresh(loaded_at):
                del self._entries[key]
                self._stats.evictions += 1
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            return value

    async def set(self, key: str, value: Any, loaded_at: Optional[float] = None) -> None:
        """
        Store a value.

        loaded_at is when the load started; a value that took long to load
        expires relative to that moment, not to when it arrived.
        """
        async with self._lock_for(key):
            stamp = loaded_at if loaded_at is not None else self._clock()
            current = self._entries.get(key)
            # Never replace a newer entry with an older load
            if current is not None and current[1] > stamp:
                return
            # A load that started before an invalidation is already outdated
            if stamp < self._invalidated_at.get(key, float("-inf")):
                return
            self._entries[key] = (value, stamp)
            self._stats.sets += 1

    async def get_or_load(self, key: str, loader: Loader) -> Any:
        """
        Serve a fresh entry, or call loader and cache its result.

        The loader is awaited with no lock held.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        started_at = self._clock()
        value = await loader()
        await self.set(key, value, loaded_at=started_at)
        return value

    async def invalidate(self, key: str) -> bool:
        """
        Returns:
            True if an entry was removed
        """
        async with self._lock_for(key):
            removed = self._entries.pop(key, None) is not None
            self._invalidated_at[key] = self._clock()
        if removed:
            self._stats.invalidations += 1
            logger.debug(f"Invalidated cache entry {key}")
        return removed

    def purge_expired(self) -> int:
        """
        Drop every stale entry, with the invalidation stamps and idle locks
        that no longer guard anything. Returns the number of entries dropped.
        """
        stale = [key for key, (_, loaded_at) in self._entries.items() if not self._is_fresh(loaded_at)]
        for key in stale:
            del self._entries[key]

        # A stamp older than the TTL can only reject loads that are stale anyway
        self._invalidated_at = {
            key: stamp for key, stamp in self._invalidated_at.items() if self._is_fresh(stamp)
        }
        for key in list(self._locks):
            if key not in self._entries and key not in self._invalidated_at and not self._locks[key].locked():
                del self._locks[key]

        self._stats.evictions += len(stale)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._invalidated_at.clear()
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        return {
            "ttl_seconds": self.ttl_seconds,
            "entries": len(self._entries),
            **self._stats.to_dict(),
        }

    def reset_stats(self) -> None:
        self._stats.reset()


# ═══════════════════════════════════════════════════════════════════════════════
# PROCESS-WIDE INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_cache: Optional[LibraryCache] = None


def init_cache(ttl_seconds: float = None) -> LibraryCache:
    """Create the process-wide cache (replacing any previous one)."""
    global _cache
    if _cache is not None:
        _cache.clear()
    _cache = LibraryCache(ttl_seconds=ttl_seconds)
    logger.info(f"Library cache initialized (ttl={_cache.ttl_seconds}s)")
    return _cache


def get_cache() -> Optional[LibraryCache]:
    """The process-wide cache, or None if not initialized."""
    return _cache


def close_cache() -> None:
    """Tear down the process-wide cache."""
    global _cache
    if _cache is not None:
        _cache.clear()
        _cache = None
        logger.info("Library cache closed")


# ═══════════════════════════════════════════════════════════════════════════════
# EVENT HANDLERS FOR CACHE INVALIDATION
# ═══════════════════════════════════════════════════════════════════════════════


def register_cache_invalidation_handlers(bus: EventBus, cache: LibraryCache) -> None:
    """Drop an account's cached library whenever it is re-synced."""

    async def invalidate_on_account_synced(data: dict) -> None:
        account_id = data.get("account_id")
        if account_id and await cache.invalidate(account_id):
            await bus.emit(
                SyncEvent.CACHE_INVALIDATED,
                {"keys": [account_id], "reason": "account_synced"},
            )

    bus.subscribe(SyncEvent.ACCOUNT_SYNCED, invalidate_on_account_synced)
    logger.info("Cache invalidation handlers registered")
