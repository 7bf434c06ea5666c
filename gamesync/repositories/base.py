"""
Schema and error translation shared by the store mixins.
"""
from contextlib import contextmanager
from typing import Iterator

import duckdb

from gamesync.exceptions import PersistenceError
from gamesync.observability import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
-- Local chat user -> upstream account (one account per user)
CREATE TABLE IF NOT EXISTS users (
    local_user_id VARCHAR PRIMARY KEY,
    display_name VARCHAR NOT NULL,
    account_id VARCHAR NOT NULL,
    linked_at TIMESTAMP NOT NULL
);

-- Owned games; usage_minutes is the latest upstream value, never a sum
CREATE TABLE IF NOT EXISTS owned_items (
    account_id VARCHAR NOT NULL,
    name VARCHAR NOT NULL,
    appid BIGINT,
    usage_minutes BIGINT NOT NULL,
    last_synced_at TIMESTAMP NOT NULL,
    PRIMARY KEY (account_id, name)
);

-- Sync bookkeeping (last bulk run, etc.)
CREATE TABLE IF NOT EXISTS sync_metadata (
    key VARCHAR PRIMARY KEY,
    value VARCHAR,
    updated_at TIMESTAMP
);
"""


@contextmanager
def persistence_errors(operation: str) -> Iterator[None]:
    """Translate DuckDB failures into PersistenceError."""
    try:
        yield
    except duckdb.Error as e:
        logger.error(
            f"Store operation {operation} failed: {e}",
            extra={"operation": operation}
        )
        raise PersistenceError(
            f"Store operation {operation} failed",
            details=str(e),
            operation=operation,
        ) from e
