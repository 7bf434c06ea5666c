"""
Pytest configuration and shared fixtures.
"""
import json
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from gamesync.events import EventBus
from gamesync.resilience import RetryConfig
from gamesync.steam import SteamClient
from gamesync.store import LibraryStore

TEST_API_KEY = "0123456789ABCDEF0123456789ABCDEF"


def make_response(status_code: int = 200, payload: Any = None, text: str = None) -> httpx.Response:
    """Build a real httpx.Response for a mocked GET."""
    if text is not None:
        return httpx.Response(status_code, text=text)
    if payload is None:
        return httpx.Response(status_code, text="")
    return httpx.Response(status_code, content=json.dumps(payload).encode())


def owned_games_payload(games: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"response": {"game_count": len(games), "games": games}}


@pytest.fixture
def sample_games() -> List[Dict[str, Any]]:
    """GetOwnedGames `games` entries."""
    return [
        {"appid": 570, "name": "Dota 2", "playtime_forever": 12000},
        {"appid": 440, "name": "Team Fortress 2", "playtime_forever": 600},
        {"appid": 730, "name": "Counter-Strike 2", "playtime_forever": 3000},
    ]


@pytest.fixture
def sample_owned_games(sample_games) -> Dict[str, Any]:
    """Full GetOwnedGames body."""
    return owned_games_payload(sample_games)


@pytest.fixture
def sample_player() -> Dict[str, Any]:
    """GetPlayerSummaries `players` entry."""
    return {
        "steamid": "76561197960287930",
        "personaname": "Rabscuttle",
        "profileurl": "https://steamcommunity.com/id/rabscuttle/",
        "avatarfull": "https://avatars.example/full.jpg",
    }


@pytest.fixture
def no_sleep(monkeypatch) -> List[float]:
    """Record retry delays instead of sleeping."""
    delays: List[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr("gamesync.resilience._sleep", fake_sleep)
    return delays


@pytest.fixture
def steam_client() -> SteamClient:
    """Steam client whose HTTP layer is a mock; set `_client.get.side_effect`."""
    client = SteamClient(
        api_key=TEST_API_KEY,
        base_url="https://steam.test",
        retry_config=RetryConfig(max_attempts=5, rate_limit_cooldown=5.0, backoff_base=2.0),
    )
    client._client = MagicMock()
    client._client.get = AsyncMock()
    client._client.aclose = AsyncMock()
    return client


@pytest_asyncio.fixture
async def store(tmp_path):
    """Fresh DuckDB file per test."""
    library_store = LibraryStore(db_path=tmp_path / "test.duckdb")
    await library_store.connect()
    yield library_store
    await library_store.close()


@pytest.fixture
def event_bus() -> EventBus:
    """Isolated event bus."""
    return EventBus()


@pytest.fixture
def response():
    """Factory for httpx.Response objects: response(status, payload=None, text=None)."""
    return make_response


@pytest.fixture
def owned_games():
    """Factory wrapping `games` entries in a GetOwnedGames body."""
    return owned_games_payload
