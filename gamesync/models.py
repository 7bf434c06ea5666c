"""
Domain models for library sync.

Dataclasses for owned games, linked users, profiles and sync outcomes.
Used by the Steam client, the store and the sync service alike.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from gamesync.exceptions import UpstreamDataError


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class SyncStatus(Enum):
    """Outcome of syncing one account."""
    SUCCESS = "success"
    FETCH_FAILED = "fetch_failed"
    PERSIST_FAILED = "persist_failed"


# ═══════════════════════════════════════════════════════════════════════════════
# DATACLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class OwnedItem:
    """One game in an account's library, with cumulative playtime."""
    name: str
    usage_minutes: int
    appid: Optional[int] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "OwnedItem":
        """Create OwnedItem from a GetOwnedGames `games[]` entry."""
        if not isinstance(data, dict):
            raise UpstreamDataError(
                "Malformed game entry",
                expected="object",
                got=type(data).__name__,
            )

        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise UpstreamDataError(
                "Game entry has no name",
                details=f"appid={data.get('appid')}",
                expected="non-empty string",
                got=repr(name),
            )

        try:
            minutes = int(data.get("playtime_forever") or 0)
        except (TypeError, ValueError):
            raise UpstreamDataError(
                "Game entry has invalid playtime",
                details=f"name={name}",
                expected="integer",
                got=repr(data.get("playtime_forever")),
            )

        appid = data.get("appid")
        return cls(
            name=name,
            usage_minutes=minutes,
            appid=int(appid) if isinstance(appid, int) else None,
        )

    @property
    def hours(self) -> int:
        """Whole hours played."""
        return self.usage_minutes // 60

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "usage_minutes": self.usage_minutes,
            "appid": self.appid,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


@dataclass
class LinkedUser:
    """Local chat user mapped to exactly one account."""
    user_id: str
    display_name: str
    account_id: str
    linked_at: Optional[datetime] = None


@dataclass
class SteamProfile:
    """Player summary used to confirm an account id before linking."""
    account_id: str
    persona_name: str
    profile_url: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SteamProfile":
        """Create SteamProfile from a GetPlayerSummaries `players[]` entry."""
        return cls(
            account_id=str(data.get("steamid", "")),
            persona_name=data.get("personaname") or "Unknown",
            profile_url=data.get("profileurl"),
            avatar_url=data.get("avatarfull"),
        )


@dataclass
class SyncResult:
    """Tagged result of a single account sync."""
    account_id: str
    status: SyncStatus
    items_synced: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "status": self.status.value,
            "items_synced": self.items_synced,
            "error": self.error,
            "error_type": self.error_type,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class BulkSyncReport:
    """
    Result of one bulk run, in enumeration order.

    Partial success is the normal case; nothing here requires every
    account to have succeeded.
    """
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[SyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[SyncResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[SyncResult]:
        return [r for r in self.results if not r.ok]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def duration_ms(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "failed_accounts": [r.account_id for r in self.failed],
            "duration_ms": round(self.duration_ms, 2),
        }
