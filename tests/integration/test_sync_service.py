"""
Integration tests for gamesync/sync_service.py

Real DuckDB store, mocked Steam client.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from gamesync.cache import LibraryCache, close_cache, init_cache
from gamesync.events import SyncEvent
from gamesync.exceptions import (
    AccountAlreadyLinkedError,
    ExhaustedRetriesError,
    NotLinkedError,
    PermanentUpstreamError,
    PersistenceError,
    ValidationError,
)
from gamesync.models import OwnedItem, SyncStatus
from gamesync.sync_service import SyncService, get_sync_service, reset_sync_service


def games(*pairs):
    return [OwnedItem(name=name, usage_minutes=minutes) for name, minutes in pairs]


def fake_client(libraries: dict) -> MagicMock:
    """Client whose fetch_library returns (or raises) per account."""
    client = MagicMock()

    async def fetch_library(account_id):
        outcome = libraries[account_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client.fetch_library = AsyncMock(side_effect=fetch_library)
    return client


async def link_all(store, *accounts):
    for n, account_id in enumerate(accounts):
        await store.link(f"user-{n}", f"User {n}", account_id)


class TestSyncOne:

    @pytest.mark.asyncio
    async def test_success(self, store, event_bus):
        client = fake_client({"A": games(("X", 10), ("Y", 5))})
        service = SyncService(client, store, bus=event_bus)

        result = await service.sync_one("A")

        assert result.status == SyncStatus.SUCCESS
        assert result.items_synced == 2
        assert result.duration_ms >= 0
        assert [i.name for i in await store.get_items("A")] == ["X", "Y"]
        assert event_bus.get_history(SyncEvent.ACCOUNT_SYNCED)[0]["data"] == {"account_id": "A", "count": 2}

    @pytest.mark.asyncio
    async def test_fetch_failure_is_a_result(self, store, event_bus):
        client = fake_client({"A": ExhaustedRetriesError("gave up", attempts=5, last_status=500)})
        service = SyncService(client, store, bus=event_bus)

        result = await service.sync_one("A")

        assert result.status == SyncStatus.FETCH_FAILED
        assert result.error_type == "ExhaustedRetriesError"
        assert await store.get_items("A") == []
        assert len(event_bus.get_history(SyncEvent.ACCOUNT_SYNC_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_is_a_result(self, store, event_bus):
        client = fake_client({"A": RuntimeError("bug")})
        service = SyncService(client, store, bus=event_bus)

        result = await service.sync_one("A")

        assert result.status == SyncStatus.FETCH_FAILED
        assert result.error_type == "RuntimeError"

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_previous_data(self, store, event_bus):
        client = fake_client({"A": games(("X", 20))})
        service = SyncService(client, store, bus=event_bus)
        await store.upsert_items("A", games(("X", 10)))

        store.upsert_items = AsyncMock(side_effect=PersistenceError("disk full", operation="upsert_items"))
        result = await service.sync_one("A")

        assert result.status == SyncStatus.PERSIST_FAILED
        assert "disk full" in result.error
        assert (await store.get_items("A"))[0].usage_minutes == 10

    @pytest.mark.asyncio
    async def test_same_account_never_synced_concurrently(self, store, event_bus):
        active = 0
        peak = 0

        async def slow_fetch(account_id):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return games(("X", 1))

        client = MagicMock()
        client.fetch_library = AsyncMock(side_effect=slow_fetch)
        service = SyncService(client, store, bus=event_bus)

        results = await asyncio.gather(service.sync_one("A"), service.sync_one("A"))

        assert all(r.ok for r in results)
        assert peak == 1
        assert not service.is_syncing("A")


class TestBulkSync:

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, store, event_bus):
        """[A, B, C] with B failing: A and C still land, report says 2/1."""
        client = fake_client({
            "A": games(("a1", 1)),
            "B": PermanentUpstreamError("private", status_code=403),
            "C": games(("c1", 3), ("c2", 4)),
        })
        await link_all(store, "A", "B", "C")
        service = SyncService(client, store, bus=event_bus)

        report = await service.bulk_sync()

        assert [r.account_id for r in report.succeeded] == ["A", "C"]
        assert [r.account_id for r in report.failed] == ["B"]
        assert len(await store.get_items("A")) == 1
        assert len(await store.get_items("C")) == 2
        assert await store.get_items("B") == []

    @pytest.mark.asyncio
    async def test_sequential_in_enumeration_order(self, store, event_bus):
        client = fake_client({"A": [], "B": [], "C": []})
        await link_all(store, "A", "B", "C")
        service = SyncService(client, store, bus=event_bus, max_concurrency=1)

        report = await service.bulk_sync()

        called = [call.args[0] for call in client.fetch_library.call_args_list]
        assert called == ["A", "B", "C"]
        assert [r.account_id for r in report.results] == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, store, event_bus):
        active = 0
        peak = 0

        async def slow_fetch(account_id):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

        client = MagicMock()
        client.fetch_library = AsyncMock(side_effect=slow_fetch)
        await link_all(store, "A", "B", "C", "D", "E")
        service = SyncService(client, store, bus=event_bus, max_concurrency=2)

        report = await service.bulk_sync()

        assert report.total == 5
        assert peak == 2

    @pytest.mark.asyncio
    async def test_no_accounts(self, store, event_bus):
        service = SyncService(fake_client({}), store, bus=event_bus)

        report = await service.bulk_sync()

        assert report.total == 0
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_enumeration_failure_propagates(self, store, event_bus):
        store.list_all_accounts = AsyncMock(side_effect=PersistenceError("gone", operation="list_all_accounts"))
        service = SyncService(fake_client({}), store, bus=event_bus)

        with pytest.raises(PersistenceError):
            await service.bulk_sync()

    @pytest.mark.asyncio
    async def test_records_last_sync_and_events(self, store, event_bus):
        await link_all(store, "A")
        service = SyncService(fake_client({"A": games(("X", 1))}), store, bus=event_bus)

        report = await service.bulk_sync()

        assert await store.get_last_sync_time("bulk_sync") == report.finished_at
        assert len(event_bus.get_history(SyncEvent.BULK_SYNC_STARTED)) == 1
        completed = event_bus.get_history(SyncEvent.BULK_SYNC_COMPLETED)
        assert completed[0]["data"]["succeeded"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_accounts_synced_once(self, store, event_bus):
        store.list_all_accounts = AsyncMock(return_value=["A", "A", "B"])
        client = fake_client({"A": [], "B": []})
        service = SyncService(client, store, bus=event_bus)

        report = await service.bulk_sync()

        assert report.total == 2
        assert client.fetch_library.call_count == 2


class TestRequestPath:

    @pytest.mark.asyncio
    async def test_link_account_syncs_immediately(self, store, event_bus):
        client = fake_client({"765": games(("Dota 2", 600))})
        service = SyncService(client, store, bus=event_bus)

        result = await service.link_account(42, "Alice", " 765 ")

        assert result.ok
        assert await store.get_account_for_user("42") == "765"
        assert len(event_bus.get_history(SyncEvent.ACCOUNT_LINKED)) == 1
        assert [i.name for i in await service.get_items_for_user(42)] == ["Dota 2"]

    @pytest.mark.asyncio
    async def test_link_account_rejects_bad_id(self, store, event_bus):
        service = SyncService(fake_client({}), store, bus=event_bus)

        with pytest.raises(ValidationError):
            await service.link_account(42, "Alice", "")

    @pytest.mark.asyncio
    async def test_link_account_conflict(self, store, event_bus):
        service = SyncService(fake_client({"765": []}), store, bus=event_bus)
        await service.link_account(1, "Alice", "765")

        with pytest.raises(AccountAlreadyLinkedError):
            await service.link_account(2, "Bob", "765")

    @pytest.mark.asyncio
    async def test_items_for_unlinked_user(self, store, event_bus):
        service = SyncService(fake_client({}), store, bus=event_bus)

        with pytest.raises(NotLinkedError):
            await service.get_items_for_user("nobody")

    @pytest.mark.asyncio
    async def test_top_items(self, store, event_bus):
        library = games(*[(f"G{n}", n * 60) for n in range(8)])
        service = SyncService(fake_client({"A": library}), store, bus=event_bus)
        await service.sync_one("A")

        top = await service.get_top_items("A")

        assert [i.name for i in top] == ["G7", "G6", "G5", "G4", "G3"]

    @pytest.mark.asyncio
    async def test_reads_through_cache_and_sync_drops_entry(self, store, event_bus):
        client = fake_client({"A": games(("X", 10))})
        cache = LibraryCache(ttl_seconds=600)
        service = SyncService(client, store, cache=cache, bus=event_bus)

        await service.sync_one("A")
        first = await service.get_items("A")
        assert first[0].usage_minutes == 10
        assert len(cache) == 1

        client.fetch_library.side_effect = None
        client.fetch_library.return_value = games(("X", 20))
        await service.sync_one("A")

        assert (await service.get_items("A"))[0].usage_minutes == 20
        assert event_bus.get_history(SyncEvent.CACHE_INVALIDATED)[0]["data"]["keys"] == ["A"]

    @pytest.mark.asyncio
    async def test_failed_sync_keeps_cached_entry(self, store, event_bus):
        client = fake_client({"A": games(("X", 10))})
        cache = LibraryCache(ttl_seconds=600)
        service = SyncService(client, store, cache=cache, bus=event_bus)
        await service.sync_one("A")
        await service.get_items("A")

        client.fetch_library.side_effect = PermanentUpstreamError("private", status_code=403)
        result = await service.sync_one("A")

        assert not result.ok
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_bulk_sync_purges_expired_cache_entries(self, store, event_bus):
        now = [1000.0]
        cache = LibraryCache(ttl_seconds=600, clock=lambda: now[0])
        await cache.set("gone", ["old"])
        now[0] += 601
        await link_all(store, "A")
        service = SyncService(fake_client({"A": games(("X", 1))}), store, cache=cache, bus=event_bus)

        await service.bulk_sync()

        assert len(cache) == 0
        assert "gone" not in cache._locks


class TestSingletonSetup:

    @pytest.mark.asyncio
    async def test_read_after_sync_sees_new_rows(self, store, event_bus):
        """init_cache() + get_sync_service(): no handler registration needed."""
        client = fake_client({"A": games(("X", 10))})
        reset_sync_service()
        init_cache()
        try:
            with patch("gamesync.sync_service.get_steam_client", AsyncMock(return_value=client)), \
                    patch("gamesync.sync_service.get_store", AsyncMock(return_value=store)), \
                    patch("gamesync.sync_service.events", event_bus):
                service = await get_sync_service()

                assert await service.get_items("A") == []
                assert (await service.sync_one("A")).ok
                assert [i.name for i in await service.get_items("A")] == ["X"]
        finally:
            reset_sync_service()
            close_cache()
