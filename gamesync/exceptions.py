"""
Custom exception hierarchy for library sync operations.

Exception Hierarchy:
    GameSyncError (base)
    ├── SteamError                  - Anything raised by the Steam client
    │   ├── TransientUpstreamError  - 429 / 5xx / network (retried internally)
    │   ├── PermanentUpstreamError  - 4xx other than 429 (never retried)
    │   ├── ExhaustedRetriesError   - Retry ceiling reached
    │   ├── UpstreamDataError       - Response body has unexpected shape
    │   └── ProfileNotFoundError    - No profile for the account id
    ├── PersistenceError            - DuckDB read/write failed
    ├── NotLinkedError              - User has no linked account
    └── AccountAlreadyLinkedError   - Account belongs to another user

    ValidationError                 - Input validation failed
"""
from typing import Any, Optional


class GameSyncError(Exception):
    """Base exception for all gamesync errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class SteamError(GameSyncError):
    """Base class for upstream (Steam Web API) failures."""


class TransientUpstreamError(SteamError):
    """
    Rate-limited or server-side failure.

    Raised for a single attempt; the retry loop decides whether to try again.
    retry_after overrides the exponential backoff (used for 429).
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class PermanentUpstreamError(SteamError):
    """
    Client error that will not go away on retry.

    Invalid account id, bad key, private endpoint, etc.
    """

    def __init__(self, message: str, details: str = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


class ExhaustedRetriesError(SteamError):
    """Retry ceiling reached without a successful response."""

    def __init__(
        self,
        message: str,
        details: str = None,
        attempts: int = 0,
        last_status: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.attempts = attempts
        self.last_status = last_status


class UpstreamDataError(SteamError):
    """
    Response body does not match the documented shape.

    Not retried: the same body would come back again.
    """

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class ProfileNotFoundError(SteamError):
    """Profile lookup returned zero players."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Steam profile not found", f"account_id={account_id}")


class PersistenceError(GameSyncError):
    """
    Store operation failed.

    For writes, no rows of the batch are visible: the previous state is kept.
    """

    def __init__(self, message: str, details: str = None, operation: str = None):
        super().__init__(message, details)
        self.operation = operation


class NotLinkedError(GameSyncError):
    """No account is linked for this user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("No account linked", f"user_id={user_id}")


class AccountAlreadyLinkedError(GameSyncError):
    """Account is already linked to a different user."""

    def __init__(self, account_id: str, user_id: str):
        self.account_id = account_id
        self.user_id = user_id
        super().__init__(
            "Account already linked to another user",
            f"account_id={account_id}",
        )


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating user input before processing.
    """

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"
