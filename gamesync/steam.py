"""
Async HTTP client for the Steam Web API.

Features:
- Connection pooling with httpx
- Library fetch with retry: fixed cooldown on 429, exponential backoff on
  5xx / network errors, no retry on other 4xx
- Single-shot profile lookup for validating an account id before linking
- Request correlation IDs for tracing
"""
import asyncio
from typing import Any, Dict, List, Optional

import httpx

from gamesync.config import config
from gamesync.exceptions import (
    PermanentUpstreamError,
    ProfileNotFoundError,
    TransientUpstreamError,
    UpstreamDataError,
)
from gamesync.models import OwnedItem, SteamProfile
from gamesync.observability import Timer, get_correlation_id, get_logger
from gamesync.resilience import RetryConfig, StatusClass, classify_status, retry_with_backoff

logger = get_logger(__name__)

OWNED_GAMES_ENDPOINT = "IPlayerService/GetOwnedGames/v1/"
PLAYER_SUMMARIES_ENDPOINT = "ISteamUser/GetPlayerSummaries/v2/"


def _default_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=config.retry.max_attempts,
        rate_limit_cooldown=config.retry.rate_limit_cooldown,
        backoff_base=config.retry.backoff_base,
    )


class SteamClient:
    """
    Async client for the two Steam endpoints we depend on.

    Usage:
        async with SteamClient(api_key="...") as client:
            items = await client.fetch_library("76561197960287930")

        # Or with manual lifecycle:
        client = SteamClient()
        await client.connect()
        try:
            profile = await client.fetch_profile("76561197960287930")
        finally:
            await client.close()
    """

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Args:
            api_key: Steam Web API key (defaults to STEAM_API_KEY)
            base_url: API base URL (defaults to STEAM_API_BASE_URL)
            timeout: Request timeout in seconds
            retry_config: Retry policy for fetch_library
        """
        self.api_key = api_key or config.steam.api_key
        self.base_url = (base_url or config.steam.base_url).rstrip("/")
        self.timeout = timeout or config.steam.request_timeout
        self.retry_config = retry_config or _default_retry_config()
        self._client: Optional[httpx.AsyncClient] = None

        if not self.api_key:
            raise ValueError("STEAM_API_KEY is required")

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=20,
                ),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SteamClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute one GET and classify the outcome.

        Raises:
            TransientUpstreamError: 429, 5xx, other non-2xx, network errors
            PermanentUpstreamError: 4xx other than 429
            UpstreamDataError: 2xx with a body that is not a JSON object
        """
        if not self._client:
            await self.connect()

        url = f"{self.base_url}/{endpoint}"
        query = {"key": self.api_key, **params}

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            with Timer(f"steam_{endpoint}", logger):
                response = await self._client.get(
                    url,
                    params=query,
                    headers=request_headers or None,
                )
        except httpx.TimeoutException as e:
            raise TransientUpstreamError(
                f"Request timeout after {self.timeout}s",
                details=endpoint,
            ) from e
        except httpx.RequestError as e:
            raise TransientUpstreamError(
                "Request failed",
                details=f"{endpoint}: {e}",
            ) from e

        status_class = classify_status(response.status_code)

        if status_class == StatusClass.RATE_LIMITED:
            raise TransientUpstreamError(
                "Rate limited by Steam",
                details=endpoint,
                status_code=response.status_code,
                retry_after=self.retry_config.rate_limit_cooldown,
            )

        if status_class == StatusClass.PERMANENT:
            raise PermanentUpstreamError(
                f"Steam returned {response.status_code}",
                details=response.text[:200],
                status_code=response.status_code,
            )

        if status_class == StatusClass.TRANSIENT:
            raise TransientUpstreamError(
                f"Steam returned {response.status_code}",
                details=response.text[:200],
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamDataError(
                "Response is not valid JSON",
                details=response.text[:200],
                expected="JSON object",
                got="unparseable body",
            ) from e

        if not isinstance(payload, dict):
            raise UpstreamDataError(
                "Unexpected response body",
                expected="JSON object",
                got=type(payload).__name__,
            )
        return payload

    async def fetch_library(self, account_id: str) -> List[OwnedItem]:
        """
        Fetch the owned games for one account, in upstream order.

        A `response` without `games` (private profile, empty library)
        yields an empty list.

        Raises:
            ExhaustedRetriesError: Retry ceiling reached
            PermanentUpstreamError: 4xx other than 429
            UpstreamDataError: Body missing `response` or malformed entries
        """
        payload = await retry_with_backoff(
            self._get_json,
            OWNED_GAMES_ENDPOINT,
            {
                "steamid": account_id,
                "format": "json",
                "include_appinfo": "true",
            },
            config=self.retry_config,
            operation=f"fetch_library({account_id})",
        )

        body = payload.get("response")
        if not isinstance(body, dict):
            raise UpstreamDataError(
                "Owned games response has no 'response' object",
                details=f"account_id={account_id}",
                expected="response object",
                got=type(body).__name__,
            )

        games = body.get("games", [])
        if not isinstance(games, list):
            raise UpstreamDataError(
                "Owned games 'games' is not a list",
                details=f"account_id={account_id}",
                expected="list",
                got=type(games).__name__,
            )

        items = [OwnedItem.from_api(game) for game in games]
        logger.debug(
            f"Fetched {len(items)} games",
            extra={"account_id": account_id, "count": len(items)}
        )
        return items

    async def fetch_profile(self, account_id: str) -> SteamProfile:
        """
        Look up a player summary. Single attempt, no retry.

        Raises:
            ProfileNotFoundError: Steam returned zero players
        """
        payload = await self._get_json(
            PLAYER_SUMMARIES_ENDPOINT,
            {"steamids": account_id},
        )

        players = (payload.get("response") or {}).get("players") or []
        if not players:
            raise ProfileNotFoundError(account_id)

        return SteamProfile.from_api(players[0])


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_steam_client: Optional[SteamClient] = None
_client_lock = asyncio.Lock()


async def get_steam_client() -> SteamClient:
    """Get singleton Steam client (connected)."""
    global _steam_client
    async with _client_lock:
        if _steam_client is None:
            _steam_client = SteamClient()
            await _steam_client.connect()
    return _steam_client


async def close_steam_client() -> None:
    """Close singleton Steam client."""
    global _steam_client
    if _steam_client:
        await _steam_client.close()
        _steam_client = None
