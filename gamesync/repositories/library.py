"""LibraryStore owned-games methods."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pandas as pd

from gamesync.models import OwnedItem
from gamesync.observability import get_logger
from gamesync.repositories.base import persistence_errors

logger = get_logger(__name__)

_ITEM_COLUMNS = "name, appid, usage_minutes, last_synced_at"


def _row_to_item(row: tuple) -> OwnedItem:
    return OwnedItem(name=row[0], appid=row[1], usage_minutes=row[2], last_synced_at=row[3])


class LibraryMixin:

    async def upsert_items(
        self,
        account_id: str,
        items: Sequence[OwnedItem],
        synced_at: Optional[datetime] = None,
    ) -> int:
        """
        Write an account's library in one statement.

        Conflict key is (account_id, name): playtime and appid are
        overwritten and last_synced_at refreshed. The whole batch lands or
        nothing does. Duplicate names within a batch collapse to the last one.

        Returns:
            Number of distinct items written
        """
        if not items:
            return 0

        synced_at = synced_at or datetime.now()

        latest: Dict[str, OwnedItem] = {}
        for item in items:
            latest[item.name] = item
        rows = list(latest.values())

        batch_df = pd.DataFrame({
            "account_id": [account_id] * len(rows),
            "name": [item.name for item in rows],
            "appid": pd.array([item.appid for item in rows], dtype="Int64"),
            "usage_minutes": [int(item.usage_minutes) for item in rows],
            "last_synced_at": [synced_at] * len(rows),
        })

        with persistence_errors("upsert_items"):
            async with self.connection() as conn:
                conn.register("library_batch_df", batch_df)
                try:
                    conn.execute("""
                        INSERT INTO owned_items (account_id, name, appid, usage_minutes, last_synced_at)
                        SELECT account_id, name, appid, usage_minutes, last_synced_at
                        FROM library_batch_df
                        ON CONFLICT (account_id, name) DO UPDATE SET
                            appid = excluded.appid,
                            usage_minutes = excluded.usage_minutes,
                            last_synced_at = excluded.last_synced_at
                    """)
                finally:
                    conn.unregister("library_batch_df")

        if len(rows) != len(items):
            logger.debug(
                f"Collapsed {len(items) - len(rows)} duplicate names",
                extra={"account_id": account_id}
            )
        logger.info(
            f"Upserted {len(rows)} games",
            extra={"account_id": account_id, "count": len(rows)}
        )
        return len(rows)

    async def get_items(self, account_id: str) -> List[OwnedItem]:
        """
        Stored games for an account, most played first.

        An empty list means nothing has been persisted yet; it does not
        indicate a failed sync.
        """
        with persistence_errors("get_items"):
            async with self.connection() as conn:
                rows = conn.execute(f"""
                    SELECT {_ITEM_COLUMNS} FROM owned_items
                    WHERE account_id = ?
                    ORDER BY usage_minutes DESC, name
                """, [account_id]).fetchall()
        return [_row_to_item(row) for row in rows]

    async def get_top_items(self, account_id: str, limit: int = 5) -> List[OwnedItem]:
        """Most played games for an account."""
        with persistence_errors("get_top_items"):
            async with self.connection() as conn:
                rows = conn.execute(f"""
                    SELECT {_ITEM_COLUMNS} FROM owned_items
                    WHERE account_id = ?
                    ORDER BY usage_minutes DESC, name
                    LIMIT ?
                """, [account_id, limit]).fetchall()
        return [_row_to_item(row) for row in rows]
