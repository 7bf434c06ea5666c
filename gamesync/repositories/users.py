"""LibraryStore user <-> account link methods."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from gamesync.exceptions import AccountAlreadyLinkedError
from gamesync.models import LinkedUser
from gamesync.observability import get_logger
from gamesync.repositories.base import persistence_errors

logger = get_logger(__name__)


class UsersMixin:

    async def link(
        self,
        user_id: str,
        display_name: str,
        account_id: str,
        linked_at: Optional[datetime] = None,
    ) -> LinkedUser:
        """
        Create or replace the user's account link.

        A relink overwrites the previous account; a user never holds two.

        Raises:
            AccountAlreadyLinkedError: account belongs to a different user
            PersistenceError: write failed
        """
        linked_at = linked_at or datetime.now()

        with persistence_errors("link"):
            async with self.connection() as conn:
                owner = conn.execute("""
                    SELECT local_user_id FROM users
                    WHERE account_id = ? AND local_user_id <> ?
                """, [account_id, user_id]).fetchone()

                if owner:
                    raise AccountAlreadyLinkedError(account_id, owner[0])

                conn.execute("""
                    INSERT INTO users (local_user_id, display_name, account_id, linked_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (local_user_id) DO UPDATE SET
                        display_name = excluded.display_name,
                        account_id = excluded.account_id,
                        linked_at = excluded.linked_at
                """, [user_id, display_name, account_id, linked_at])

        logger.info(
            f"Linked user {user_id} to account {account_id}",
            extra={"user_id": user_id, "account_id": account_id}
        )
        return LinkedUser(
            user_id=user_id,
            display_name=display_name,
            account_id=account_id,
            linked_at=linked_at,
        )

    async def get_linked_user(self, user_id: str) -> Optional[LinkedUser]:
        """Get the full link record for a user."""
        with persistence_errors("get_linked_user"):
            async with self.connection() as conn:
                row = conn.execute("""
                    SELECT local_user_id, display_name, account_id, linked_at
                    FROM users WHERE local_user_id = ?
                """, [user_id]).fetchone()

        if not row:
            return None
        return LinkedUser(user_id=row[0], display_name=row[1], account_id=row[2], linked_at=row[3])

    async def get_account_for_user(self, user_id: str) -> Optional[str]:
        """Get the account linked to a user, if any."""
        with persistence_errors("get_account_for_user"):
            async with self.connection() as conn:
                row = conn.execute(
                    "SELECT account_id FROM users WHERE local_user_id = ?", [user_id]
                ).fetchone()
        return row[0] if row else None

    async def is_account_linked(self, account_id: str) -> bool:
        """Check whether any user has linked this account."""
        with persistence_errors("is_account_linked"):
            async with self.connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM users WHERE account_id = ? LIMIT 1", [account_id]
                ).fetchone()
        return row is not None

    async def list_all_accounts(self) -> List[str]:
        """Every currently linked account, oldest link first."""
        with persistence_errors("list_all_accounts"):
            async with self.connection() as conn:
                rows = conn.execute("""
                    SELECT account_id FROM users
                    GROUP BY account_id
                    ORDER BY MIN(linked_at), account_id
                """).fetchall()
        return [row[0] for row in rows]
