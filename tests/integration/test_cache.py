"""
Integration tests for gamesync/cache.py

Uses a fake clock so freshness is deterministic.
"""
import asyncio
import pytest

from gamesync.cache import (
    CacheStats,
    LibraryCache,
    close_cache,
    get_cache,
    init_cache,
    register_cache_invalidation_handlers,
)
from gamesync.events import SyncEvent


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingLoader:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return LibraryCache(ttl_seconds=600, clock=clock)


class TestCacheStats:

    def test_hit_rate_empty(self):
        assert CacheStats().hit_rate == 0.0

    def test_hit_rate_calculation(self):
        assert CacheStats(hits=75, misses=25).hit_rate == 75.0

    def test_reset(self):
        stats = CacheStats(hits=1, misses=2, sets=3)
        stats.reset()
        assert stats.to_dict()["hits"] == 0


class TestFreshness:

    @pytest.mark.asyncio
    async def test_fresh_entry_served_without_loader(self, cache, clock):
        loader = CountingLoader(["X"])
        await cache.get_or_load("A", loader)

        clock.advance(599)
        assert await cache.get_or_load("A", loader) == ["X"]
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_stale_entry_never_served(self, cache, clock):
        await cache.set("A", ["old"])

        clock.advance(600)
        assert await cache.get("A") is None
        assert len(cache) == 0

        loader = CountingLoader(["new"])
        assert await cache.get_or_load("A", loader) == ["new"]
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_loaded_at_is_load_start(self, cache, clock):
        """A slow load ages from when it started, not from when it finished."""

        async def slow_loader():
            clock.advance(500)
            return ["X"]

        await cache.get_or_load("A", slow_loader)
        clock.advance(150)

        assert await cache.get("A") is None

    @pytest.mark.asyncio
    async def test_purge_expired(self, cache, clock):
        await cache.set("A", 1)
        clock.advance(300)
        await cache.set("B", 2)
        clock.advance(350)

        assert cache.purge_expired() == 1
        assert await cache.get("B") == 2

    @pytest.mark.asyncio
    async def test_purge_drops_old_stamps_and_idle_locks(self, cache, clock):
        await cache.invalidate("A")
        await cache.set("B", 2)
        clock.advance(601)
        await cache.invalidate("C")

        cache.purge_expired()

        assert set(cache._invalidated_at) == {"C"}
        assert set(cache._locks) == {"C"}
        assert len(cache) == 0


class TestLocking:

    @pytest.mark.asyncio
    async def test_loader_runs_outside_lock(self, cache):
        """A slow load for one key does not block reads of another."""
        release = asyncio.Event()
        await cache.set("B", ["b"])

        async def blocked_loader():
            await release.wait()
            return ["a"]

        pending = asyncio.create_task(cache.get_or_load("A", blocked_loader))
        await asyncio.sleep(0)

        assert await asyncio.wait_for(cache.get("B"), timeout=1) == ["b"]
        # Same key is also readable while its loader is pending
        assert await asyncio.wait_for(cache.get("A"), timeout=1) is None

        release.set()
        assert await pending == ["a"]

    @pytest.mark.asyncio
    async def test_older_load_does_not_replace_newer_entry(self, cache, clock):
        await cache.set("A", "new", loaded_at=clock.now)
        await cache.set("A", "old", loaded_at=clock.now - 10)

        assert await cache.get("A") == "new"


class TestInvalidation:

    @pytest.mark.asyncio
    async def test_invalidate(self, cache):
        await cache.set("A", 1)

        assert await cache.invalidate("A") is True
        assert await cache.invalidate("A") is False
        assert await cache.get("A") is None

    @pytest.mark.asyncio
    async def test_load_started_before_invalidation_is_discarded(self, cache, clock):
        release = asyncio.Event()

        async def slow_loader():
            await release.wait()
            return "pre-sync"

        pending = asyncio.create_task(cache.get_or_load("A", slow_loader))
        await asyncio.sleep(0)

        clock.advance(1)
        await cache.invalidate("A")
        release.set()

        assert await pending == "pre-sync"
        assert await cache.get("A") is None

    @pytest.mark.asyncio
    async def test_account_synced_event_invalidates(self, cache, event_bus):
        register_cache_invalidation_handlers(event_bus, cache)
        await cache.set("A", ["X"])

        await event_bus.emit(SyncEvent.ACCOUNT_SYNCED, {"account_id": "A", "count": 1})

        assert await cache.get("A") is None
        emitted = event_bus.get_history(SyncEvent.CACHE_INVALIDATED)
        assert emitted[0]["data"]["keys"] == ["A"]

    def test_stats(self, cache):
        stats = cache.get_stats()
        assert stats["ttl_seconds"] == 600
        assert stats["entries"] == 0


class TestLifecycle:

    def test_init_get_close(self):
        cache = init_cache(ttl_seconds=30)
        try:
            assert get_cache() is cache
            assert cache.ttl_seconds == 30
        finally:
            close_cache()
        assert get_cache() is None
