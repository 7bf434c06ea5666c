"""
DuckDB store for linked accounts and their game libraries.

The store exclusively owns persisted state. Domain methods live in
repository mixins:
- UsersMixin: link / relink, account lookup, account enumeration
- LibraryMixin: idempotent batch upsert, reads
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import duckdb

from gamesync.config import config
from gamesync.observability import get_logger
from gamesync.repositories import SCHEMA_SQL, LibraryMixin, UsersMixin, persistence_errors

logger = get_logger(__name__)

IN_MEMORY = ":memory:"


class LibraryStore(UsersMixin, LibraryMixin):
    """
    Async-compatible DuckDB store.

    All access to the single connection is serialized by an asyncio lock;
    DuckDB connections must not be used concurrently.
    """

    def __init__(self, db_path: Path = None):
        self.db_path = db_path if db_path is not None else config.database.path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the database file and create the schema if needed."""
        if str(self.db_path) != IN_MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                with persistence_errors("connect"):
                    self._connection = duckdb.connect(str(self.db_path))
                    self._connection.execute(SCHEMA_SQL)
                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        async with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @asynccontextmanager
    async def connection(self):
        """Get the database connection, holding the store lock."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    # ─── Sync metadata ───────────────────────────────────────────────────────

    async def get_last_sync_time(self, key: str = "bulk_sync") -> Optional[datetime]:
        """Get the last sync timestamp for a given key."""
        with persistence_errors("get_last_sync_time"):
            async with self.connection() as conn:
                result = conn.execute(
                    "SELECT value FROM sync_metadata WHERE key = ?", [key]
                ).fetchone()
        if result and result[0]:
            return datetime.fromisoformat(result[0])
        return None

    async def set_last_sync_time(
        self, key: str = "bulk_sync", timestamp: datetime = None
    ) -> None:
        """Set the last sync timestamp for a given key."""
        if timestamp is None:
            timestamp = datetime.now()

        with persistence_errors("set_last_sync_time"):
            async with self.connection() as conn:
                conn.execute("""
                    INSERT INTO sync_metadata (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, [key, timestamp.isoformat(), datetime.now()])

    async def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        with persistence_errors("get_stats"):
            async with self.connection() as conn:
                users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
                accounts = conn.execute(
                    "SELECT COUNT(DISTINCT account_id) FROM users"
                ).fetchone()[0]
                items = conn.execute("SELECT COUNT(*) FROM owned_items").fetchone()[0]
                oldest = conn.execute(
                    "SELECT MIN(last_synced_at) FROM owned_items"
                ).fetchone()[0]

        last_bulk = await self.get_last_sync_time("bulk_sync")
        return {
            "users": users,
            "accounts": accounts,
            "items": items,
            "oldest_item_sync": oldest.isoformat() if oldest else None,
            "last_bulk_sync": last_bulk.isoformat() if last_bulk else None,
            "db_path": str(self.db_path),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[LibraryStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> LibraryStore:
    """Get singleton store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = LibraryStore()
            await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
