#!/usr/bin/env python3
"""
Run the daily library sync daemon.

Usage:
    python scripts/run_scheduler.py
    python scripts/run_scheduler.py --sync-now  # Also run one bulk sync at startup
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gamesync.cache import close_cache, init_cache
from gamesync.config import ConfigurationError, config, validate_config
from gamesync.observability import get_logger, setup_logging
from gamesync.scheduler import DAILY_SYNC_JOB_ID, start_scheduler, stop_scheduler
from gamesync.steam import close_steam_client
from gamesync.store import close_store, get_store
from gamesync.sync_service import reset_sync_service

logger = get_logger("gamesync.daemon")


async def startup() -> None:
    try:
        validate_config(require_api=True)
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    store = await get_store()
    stats = await store.get_stats()
    logger.info(
        f"DuckDB ready: {stats['accounts']} accounts, {stats['items']} games, "
        f"last bulk sync {stats['last_bulk_sync'] or 'never'}"
    )

    if config.cache.enabled:
        init_cache()

    await start_scheduler()


async def shutdown() -> None:
    try:
        stop_scheduler()
    except Exception as e:
        logger.warning(f"Error stopping scheduler: {e}")

    try:
        await close_steam_client()
    except Exception as e:
        logger.warning(f"Error closing Steam client: {e}")

    reset_sync_service()
    close_cache()

    try:
        await close_store()
    except Exception as e:
        logger.warning(f"Error closing DuckDB: {e}")

    logger.info("gamesync daemon stopped")


async def main(sync_now: bool = False) -> int:
    setup_logging(level=config.logging.level, json_format=config.logging.json_format)
    logger.info(f"gamesync {config.version} starting...")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await startup()
    try:
        if sync_now:
            from gamesync.scheduler import get_scheduler
            await get_scheduler().run_job_now(DAILY_SYNC_JOB_ID)
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await shutdown()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the daily Steam library sync")
    parser.add_argument(
        "--sync-now",
        action="store_true",
        help="Trigger one bulk sync immediately after startup"
    )
    args = parser.parse_args()

    exit_code = asyncio.run(main(sync_now=args.sync_now))
    sys.exit(exit_code)
