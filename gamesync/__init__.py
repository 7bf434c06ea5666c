"""
gamesync: keeps a local DuckDB copy of linked users' Steam game libraries.

- exceptions: Custom exception hierarchy
- validators: Input validation functions
- config: Centralized configuration
- steam: Steam Web API client with retry
- store: DuckDB persistence
- sync_service: single-account and bulk sync
- scheduler: daily bulk sync trigger
"""

# Import in dependency order
from gamesync.exceptions import (
    GameSyncError,
    SteamError,
    TransientUpstreamError,
    PermanentUpstreamError,
    ExhaustedRetriesError,
    UpstreamDataError,
    ProfileNotFoundError,
    PersistenceError,
    NotLinkedError,
    AccountAlreadyLinkedError,
    ValidationError,
)

from gamesync.validators import (
    validate_account_id,
    validate_user_id,
    validate_limit,
    parse_daily_time,
)

from gamesync.config import config

__version__ = config.version

__all__ = [
    # Exceptions
    "GameSyncError",
    "SteamError",
    "TransientUpstreamError",
    "PermanentUpstreamError",
    "ExhaustedRetriesError",
    "UpstreamDataError",
    "ProfileNotFoundError",
    "PersistenceError",
    "NotLinkedError",
    "AccountAlreadyLinkedError",
    "ValidationError",
    # Validators
    "validate_account_id",
    "validate_user_id",
    "validate_limit",
    "parse_daily_time",
    # Config
    "config",
]
