"""Command-line entry point.

Usage:
    pump-signal-tracker run [--dry-run]
    pump-signal-tracker reset
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Sequence

from redis.asyncio import Redis

from pump_signal_tracker.config import Settings, get_settings
from pump_signal_tracker.pipeline import Pipeline
from pump_signal_tracker.storage.snapshot import SnapshotError, SnapshotStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pump-signal-tracker",
        description="Track new pump.fun tokens and alert on bullish signals",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the tracking pipeline")
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Log alerts instead of sending them",
    )

    sub.add_parser("reset", help="Delete the persisted snapshot (tokens, alert records, counters)")
    return parser


async def run_pipeline(settings: Settings, *, dry_run: bool) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run or None)
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def _request_stop() -> None:
        logger.info("Shutdown requested")
        if main_task:
            main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    await pipeline.run()


async def reset_snapshot(settings: Settings) -> bool:
    redis = Redis.from_url(settings.redis.url)
    try:
        await SnapshotStore(redis, key_prefix=settings.snapshot.key_prefix).clear()
    except SnapshotError as e:
        logger.error("Reset failed: %s", e)
        return False
    finally:
        await redis.aclose()
    logger.info("Persisted snapshot cleared")
    return True


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)
    logger.info("Configuration: %s", settings.redacted_summary())

    if args.command == "reset":
        return 0 if asyncio.run(reset_snapshot(settings)) else 1

    try:
        asyncio.run(run_pipeline(settings, dry_run=args.dry_run))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
