#!/usr/bin/env python3
"""
Sync one Steam account (or every linked account) right now.

Usage:
    python scripts/sync_account.py 76561197960287930
    python scripts/sync_account.py 76561197960287930 --top 10
    python scripts/sync_account.py --all
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gamesync.config import ConfigurationError, config, validate_config
from gamesync.exceptions import GameSyncError, ValidationError
from gamesync.observability import get_logger, setup_logging
from gamesync.steam import close_steam_client
from gamesync.store import close_store
from gamesync.sync_service import get_sync_service, reset_sync_service
from gamesync.validators import validate_account_id, validate_limit

logger = get_logger("gamesync.sync_account")


async def main(account_id: str = None, sync_all: bool = False, top: int = 5) -> int:
    try:
        validate_config(require_api=True)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2

    try:
        service = await get_sync_service()

        if sync_all:
            report = await service.bulk_sync()
            print(json.dumps(report.to_dict(), indent=2))
            return 0 if not report.failed else 1

        result = await service.sync_one(account_id)
        print(json.dumps(result.to_dict(), indent=2))
        if not result.ok:
            return 1

        print(f"\nTop {top} games by playtime:")
        for item in await service.get_top_items(account_id, top):
            print(f"  {item.name}: {item.hours} hours")
        return 0

    except GameSyncError as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        return 1
    finally:
        await close_steam_client()
        await close_store()
        reset_sync_service()


def parse_args(argv=None) -> argparse.Namespace:
    """Parse and validate arguments; exits with usage on bad input."""
    parser = argparse.ArgumentParser(description="Sync Steam game libraries into DuckDB")
    parser.add_argument("account_id", nargs="?", help="Steam account id (SteamID64)")
    parser.add_argument("--all", action="store_true", help="Sync every linked account")
    parser.add_argument(
        "--top",
        type=int,
        default=5,
        help="Number of most played games to print (default: 5)"
    )
    args = parser.parse_args(argv)

    if args.all == bool(args.account_id):
        parser.error("pass either an account id or --all")

    try:
        if args.account_id:
            args.account_id = validate_account_id(args.account_id)
        args.top = validate_limit(args.top, field="top")
    except ValidationError as e:
        parser.error(str(e))

    return args


if __name__ == "__main__":
    args = parse_args()

    setup_logging(level=config.logging.level, json_format=config.logging.json_format)

    exit_code = asyncio.run(main(account_id=args.account_id, sync_all=args.all, top=args.top))
    sys.exit(exit_code)
