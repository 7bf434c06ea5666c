"""
Centralized configuration for gamesync.

Configuration is loaded from environment variables (and a .env file, if
present) with sensible defaults.

Usage:
    from gamesync.config import config

    api_key = config.steam.api_key
    ttl = config.cache.ttl_seconds
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from gamesync.exceptions import ValidationError
from gamesync.validators import parse_daily_time

# Load environment variables
load_dotenv()

PROJECT_ROOT = Path(__file__).parent.parent


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class SteamConfig:
    """Steam Web API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("STEAM_API_BASE_URL", "https://api.steampowered.com")
    )
    api_key: str = field(default_factory=lambda: os.getenv("STEAM_API_KEY", ""))
    request_timeout: float = 30.0


@dataclass(frozen=True)
class RetrySettings:
    """Retry policy for the library fetch."""

    max_attempts: int = 5
    rate_limit_cooldown: float = 5.0  # seconds, after HTTP 429
    backoff_base: float = 2.0  # sleep backoff_base ** attempt otherwise


@dataclass(frozen=True)
class DatabaseConfig:
    """DuckDB storage configuration."""

    path: Path = field(
        default_factory=lambda: Path(
            os.getenv("GAMESYNC_DB_PATH", str(PROJECT_ROOT / "data" / "gamesync.duckdb"))
        )
    )


@dataclass(frozen=True)
class CacheConfig:
    """Read cache configuration."""

    ttl_seconds: int = 600  # 10 minutes
    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))


@dataclass(frozen=True)
class SchedulerConfig:
    """Daily sync trigger configuration."""

    daily_time: str = field(default_factory=lambda: os.getenv("DAILY_SYNC_TIME", "03:00"))
    # Empty means the server's local timezone
    timezone: str = field(default_factory=lambda: os.getenv("SCHEDULER_TIMEZONE", ""))
    misfire_grace_seconds: int = 60

    @property
    def hour_minute(self) -> Tuple[int, int]:
        return parse_daily_time(self.daily_time, field="DAILY_SYNC_TIME")

    @property
    def timezone_name(self) -> Optional[str]:
        return self.timezone.strip() or None


@dataclass(frozen=True)
class SyncConfig:
    """Bulk sync configuration."""

    # 1 = strictly sequential, in enumeration order
    bulk_concurrency: int = field(default_factory=lambda: _env_int("BULK_SYNC_CONCURRENCY", 1))


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: _env_bool("LOG_JSON"))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    steam: SteamConfig = field(default_factory=SteamConfig)
    retry: RetrySettings = field(default_factory=RetrySettings)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Global config instance
config = AppConfig()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(app_config: AppConfig = None, require_api: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on startup to fail fast with clear error messages
    instead of failing on the first sync.

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = app_config or config
    errors = []

    if require_api and not cfg.steam.api_key:
        errors.append("STEAM_API_KEY is required but not set")

    # Steam keys are 32 hex characters
    if cfg.steam.api_key and len(cfg.steam.api_key) != 32:
        errors.append("STEAM_API_KEY appears to be invalid (expected 32 characters)")

    try:
        cfg.scheduler.hour_minute
    except ValidationError as e:
        errors.append(str(e))

    tz_name = cfg.scheduler.timezone_name
    if tz_name:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"SCHEDULER_TIMEZONE is not a known timezone: {tz_name!r}")

    if cfg.sync.bulk_concurrency < 1:
        errors.append("BULK_SYNC_CONCURRENCY must be at least 1")

    if cfg.cache.ttl_seconds <= 0:
        errors.append("Cache TTL must be positive")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
