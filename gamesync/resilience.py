"""
Retry policy for upstream calls.

Provides:
- Status classification (success / rate limited / permanent / transient)
- Retry loop with fixed cooldown for 429 and exponential backoff otherwise
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from gamesync.exceptions import ExhaustedRetriesError, TransientUpstreamError
from gamesync.observability import get_logger

logger = get_logger(__name__)

# Indirection so tests can record delays without touching asyncio itself
_sleep = asyncio.sleep


class StatusClass(Enum):
    """How an HTTP status should be handled by the retry loop."""
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"  # 429: fixed cooldown, retry
    PERMANENT = "permanent"        # other 4xx: fail now
    TRANSIENT = "transient"        # 5xx and anything else: backoff, retry


def classify_status(status_code: int) -> StatusClass:
    """Classify an HTTP status code."""
    if 200 <= status_code < 300:
        return StatusClass.SUCCESS
    if status_code == 429:
        return StatusClass.RATE_LIMITED
    if 400 <= status_code < 500:
        return StatusClass.PERMANENT
    return StatusClass.TRANSIENT


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 5
    rate_limit_cooldown: float = 5.0  # seconds after a 429
    backoff_base: float = 2.0  # backoff_base ** attempt seconds otherwise
    max_delay: Optional[float] = None

    def delay_for(self, attempt: int, error: TransientUpstreamError) -> float:
        """
        Seconds to wait after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed
            error: The failure of that attempt
        """
        if error.retry_after is not None:
            return float(error.retry_after)

        delay = self.backoff_base ** attempt
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    operation: str = "request",
    **kwargs
) -> Any:
    """
    Execute an async function, retrying on TransientUpstreamError.

    Any other exception (including PermanentUpstreamError) propagates on the
    first occurrence. No sleep follows the final attempt.

    Returns:
        Result of func

    Raises:
        ExhaustedRetriesError: All attempts failed transiently
    """
    config = config or RetryConfig()
    last_error: Optional[TransientUpstreamError] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except TransientUpstreamError as e:
            last_error = e

            if attempt == config.max_attempts:
                break

            delay = config.delay_for(attempt, e)
            logger.warning(
                f"{operation} attempt {attempt}/{config.max_attempts} failed, retrying in {delay:.1f}s",
                extra={
                    "attempt": attempt,
                    "delay": delay,
                    "status_code": e.status_code,
                    "rate_limited": e.is_rate_limited,
                    "error": str(e),
                }
            )
            await _sleep(delay)

    last_status = last_error.status_code if last_error else None
    logger.error(
        f"All {config.max_attempts} {operation} attempts failed",
        extra={"last_status": last_status, "error": str(last_error)}
    )
    raise ExhaustedRetriesError(
        f"{operation} failed after {config.max_attempts} attempts",
        details=str(last_error) if last_error else None,
        attempts=config.max_attempts,
        last_status=last_status,
    ) from last_error
