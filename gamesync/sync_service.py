"""
Sync service keeping the DuckDB store in step with Steam libraries.

Features:
- sync_one: fetch + upsert for one account, returning a tagged result
- bulk_sync: every linked account, failures isolated per account
- Bounded concurrency for bulk runs (default: sequential)
- Per-account locks so on-demand and scheduled syncs never overlap
- Cached reads for the request path
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Union

from gamesync.cache import LibraryCache, get_cache
from gamesync.config import config
from gamesync.events import EventBus, SyncEvent, events
from gamesync.exceptions import NotLinkedError, PersistenceError, SteamError
from gamesync.models import BulkSyncReport, OwnedItem, SyncResult, SyncStatus
from gamesync.observability import Timer, correlation_context, get_logger, log_context
from gamesync.steam import SteamClient, get_steam_client
from gamesync.store import LibraryStore, get_store
from gamesync.validators import validate_account_id, validate_limit, validate_user_id

logger = get_logger(__name__)


class SyncService:
    """
    Composes the Steam client and the store.

    Usage:
        service = SyncService(client, store, cache=cache)
        result = await service.sync_one("76561197960287930")
        report = await service.bulk_sync()
    """

    def __init__(
        self,
        client: SteamClient,
        store: LibraryStore,
        cache: Optional[LibraryCache] = None,
        bus: Optional[EventBus] = None,
        max_concurrency: int = None,
    ):
        self.client = client
        self.store = store
        self.cache = cache
        self.bus = bus if bus is not None else events
        self.max_concurrency = max(1, max_concurrency or config.sync.bulk_concurrency)
        self._account_locks: Dict[str, asyncio.Lock] = {}

    def _account_lock(self, account_id: str) -> asyncio.Lock:
        lock = self._account_locks.get(account_id)
        if lock is None:
            lock = self._account_locks[account_id] = asyncio.Lock()
        return lock

    def is_syncing(self, account_id: str) -> bool:
        """True while a sync for this account is in flight."""
        lock = self._account_locks.get(account_id)
        return lock is not None and lock.locked()

    async def sync_one(self, account_id: str) -> SyncResult:
        """
        Fetch an account's library and persist it.

        Never raises for fetch or persistence failures; the caller decides
        how to report the returned result.
        """
        async with self._account_lock(account_id):
            with log_context(account_id=account_id), Timer("sync_one", logger) as timer:
                result = await self._sync_locked(account_id)
            result.duration_ms = timer.elapsed_ms
            if result.ok:
                await self._invalidate_cached(account_id)

        if result.ok:
            await self.bus.emit(
                SyncEvent.ACCOUNT_SYNCED,
                {"account_id": account_id, "count": result.items_synced},
            )
        else:
            await self.bus.emit(
                SyncEvent.ACCOUNT_SYNC_FAILED,
                {
                    "account_id": account_id,
                    "status": result.status.value,
                    "error": result.error,
                },
            )
        return result

    async def _sync_locked(self, account_id: str) -> SyncResult:
        try:
            items = await self.client.fetch_library(account_id)
        except SteamError as e:
            logger.warning(f"Library fetch failed: {e}")
            return self._failure(account_id, SyncStatus.FETCH_FAILED, e)
        except Exception as e:
            logger.exception(f"Unexpected error fetching library: {e}")
            return self._failure(account_id, SyncStatus.FETCH_FAILED, e)

        try:
            count = await self.store.upsert_items(account_id, items)
        except PersistenceError as e:
            logger.error(f"Library write failed, previous data kept: {e}")
            return self._failure(account_id, SyncStatus.PERSIST_FAILED, e)
        except Exception as e:
            logger.exception(f"Unexpected error writing library: {e}")
            return self._failure(account_id, SyncStatus.PERSIST_FAILED, e)

        logger.info(f"Synced {count} games", extra={"count": count})
        return SyncResult(account_id=account_id, status=SyncStatus.SUCCESS, items_synced=count)

    async def _invalidate_cached(self, account_id: str) -> None:
        # Reads after a successful sync must see the new rows
        if self.cache is not None and await self.cache.invalidate(account_id):
            await self.bus.emit(
                SyncEvent.CACHE_INVALIDATED,
                {"keys": [account_id], "reason": "account_synced"},
            )

    @staticmethod
    def _failure(account_id: str, status: SyncStatus, error: Exception) -> SyncResult:
        return SyncResult(
            account_id=account_id,
            status=status,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def bulk_sync(self) -> BulkSyncReport:
        """
        Sync every linked account.

        One account's failure never stops the others. Accounts are
        dispatched in enumeration order, at most max_concurrency at a time.

        Raises:
            PersistenceError: accounts could not be enumerated
        """
        with correlation_context():
            report = BulkSyncReport(started_at=datetime.now())

            accounts = list(dict.fromkeys(await self.store.list_all_accounts()))
            logger.info(
                f"Starting bulk sync of {len(accounts)} accounts",
                extra={"accounts": len(accounts), "concurrency": self.max_concurrency}
            )
            await self.bus.emit(
                SyncEvent.BULK_SYNC_STARTED,
                {"accounts": len(accounts)},
            )

            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def run(account_id: str) -> SyncResult:
                async with semaphore:
                    return await self.sync_one(account_id)

            outcomes = await asyncio.gather(
                *[run(account_id) for account_id in accounts],
                return_exceptions=True,
            )

            for account_id, outcome in zip(accounts, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(
                        f"Sync of {account_id} crashed: {outcome}",
                        extra={"account_id": account_id}
                    )
                    outcome = self._failure(account_id, SyncStatus.FETCH_FAILED, outcome)
                report.results.append(outcome)

            report.finished_at = datetime.now()

            try:
                await self.store.set_last_sync_time("bulk_sync", report.finished_at)
            except PersistenceError as e:
                logger.warning(f"Could not record bulk sync time: {e}")

            if self.cache is not None:
                purged = self.cache.purge_expired()
                if purged:
                    logger.debug(f"Purged {purged} expired cache entries")

            summary = report.to_dict()
            if report.failed:
                logger.warning(
                    f"Bulk sync finished: {len(report.succeeded)}/{report.total} accounts synced",
                    extra={"failed_accounts": summary["failed_accounts"]}
                )
            else:
                logger.info(f"Bulk sync finished: {report.total} accounts synced")

            await self.bus.emit(SyncEvent.BULK_SYNC_COMPLETED, summary)
            return report

    # ═══════════════════════════════════════════════════════════════════════════
    # REQUEST-PATH HELPERS
    # ═══════════════════════════════════════════════════════════════════════════

    async def link_account(
        self,
        user_id: Union[str, int],
        display_name: str,
        account_id: str,
    ) -> SyncResult:
        """
        Link a user to an account, then sync it right away.

        Raises:
            ValidationError: bad user or account id
            AccountAlreadyLinkedError: account belongs to another user
            PersistenceError: link could not be written
        """
        user_id = validate_user_id(user_id)
        account_id = validate_account_id(account_id)

        await self.store.link(user_id, display_name, account_id)
        await self.bus.emit(
            SyncEvent.ACCOUNT_LINKED,
            {"user_id": user_id, "account_id": account_id},
        )
        return await self.sync_one(account_id)

    async def get_items(self, account_id: str) -> List[OwnedItem]:
        """Stored games for an account, through the cache when one is set."""
        if self.cache is None:
            return await self.store.get_items(account_id)
        return await self.cache.get_or_load(
            account_id, lambda: self.store.get_items(account_id)
        )

    async def get_items_for_user(self, user_id: Union[str, int]) -> List[OwnedItem]:
        """
        Raises:
            NotLinkedError: user has no linked account
        """
        user_id = validate_user_id(user_id)
        account_id = await self.store.get_account_for_user(user_id)
        if account_id is None:
            raise NotLinkedError(user_id)
        return await self.get_items(account_id)

    async def get_top_items(self, account_id: str, limit: int = 5) -> List[OwnedItem]:
        """Most played games for an account."""
        return await self.store.get_top_items(account_id, validate_limit(limit))


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_sync_service: Optional[SyncService] = None


async def get_sync_service() -> SyncService:
    """Get singleton sync service instance."""
    global _sync_service
    if _sync_service is None:
        client = await get_steam_client()
        store = await get_store()
        _sync_service = SyncService(client, store, cache=get_cache())
    return _sync_service


def reset_sync_service() -> None:
    """Forget the singleton (after closing its client/store)."""
    global _sync_service
    _sync_service = None
