"""
Repository mixins for the DuckDB library store.

- UsersMixin: user <-> account links and account enumeration
- LibraryMixin: owned-games upsert and reads
"""
from gamesync.repositories.base import SCHEMA_SQL, persistence_errors
from gamesync.repositories.library import LibraryMixin
from gamesync.repositories.users import UsersMixin

__all__ = [
    "SCHEMA_SQL",
    "persistence_errors",
    "LibraryMixin",
    "UsersMixin",
]
