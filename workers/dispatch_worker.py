"""Standalone worker that sweeps due post intents into the dispatch engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from syndicate.core.config import get_settings
from syndicate.core.logging import configure_logging
from syndicate.dependencies import (
    build_scheduler_runner,
    get_dispatch_engine,
    get_intent_store,
    verify_startup_configuration,
)
from syndicate.services.scheduler import SweepSummary, run_sweep
from syndicate.utils.clock import now_ms

logger = logging.getLogger(__name__)


async def run_once() -> SweepSummary:
    """Run a single sweep, e.g. from cron."""
    stale_claim_ms = get_settings().scheduler.stale_claim_seconds * 1000
    return await run_sweep(
        now_ms(),
        get_intent_store(),
        get_dispatch_engine(),
        stale_claim_ms=stale_claim_ms,
    )


async def run_forever() -> None:
    runner = build_scheduler_runner()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    runner.start()
    try:
        await stop_event.wait()
    finally:
        await runner.stop()


async def main(once: bool = False) -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    verify_startup_configuration()
    if once:
        summary = await run_once()
        logger.info("Single sweep complete: %s", summary)
        return
    await run_forever()


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dispatch due scheduled posts.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit instead of ticking forever.",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":  # pragma: no cover - manual execution path
    args = _parse_args()
    try:
        asyncio.run(main(once=args.once))
    except KeyboardInterrupt:
        logger.info("Dispatch worker stopped")
