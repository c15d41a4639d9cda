"""
Recurring sweep that feeds due post intents to the dispatch engine.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Set

from syndicate.clients.intent_store import SQLiteIntentStore
from syndicate.core.errors import ClaimConflict, SyndicateError
from syndicate.models.intents import IntentStatus, PostIntent
from syndicate.utils.clock import now_ms as wall_clock_ms

logger = logging.getLogger(__name__)

DEFAULT_STALE_CLAIM_MS = 15 * 60 * 1000


class Dispatcher(Protocol):
    async def dispatch(
        self, intent: PostIntent, *, correlation_id: Optional[str] = None
    ) -> PostIntent: ...


@dataclass(slots=True)
class SweepSummary:
    candidates: int = 0
    claimed: int = 0
    published: int = 0
    failed: int = 0
    errors: int = 0


async def run_sweep(
    now_ms: int,
    store: SQLiteIntentStore,
    engine: Dispatcher,
    *,
    stale_claim_ms: int = DEFAULT_STALE_CLAIM_MS,
    limit: int = 100,
) -> SweepSummary:
    """Claim every due intent and dispatch the claimed ones concurrently.

    Only intents this sweep claimed are dispatched; a fresh ``dispatching`` or
    terminal intent is never touched.
    """
    summary = SweepSummary()
    stale_before = now_ms - stale_claim_ms
    try:
        candidates = store.list_claimable(
            now_ms=now_ms, stale_before_ms=stale_before, limit=limit
        )
    except sqlite3.Error:
        logger.exception("Intent store unavailable; skipping this sweep")
        summary.errors += 1
        return summary
    summary.candidates = len(candidates)

    claimed: list[PostIntent] = []
    for candidate in candidates:
        try:
            intent = store.claim(
                candidate.intent_id, now_ms=now_ms, stale_before_ms=stale_before
            )
        except sqlite3.Error:
            logger.exception("Claim failed", extra={"intent_id": candidate.intent_id})
            summary.errors += 1
            continue
        if intent is None:
            continue
        if candidate.status is IntentStatus.DISPATCHING:
            logger.warning(
                "Re-claimed stale dispatch (attempt %s)",
                intent.attempts,
                extra={"intent_id": intent.intent_id},
            )
        claimed.append(intent)
    summary.claimed = len(claimed)

    outcomes = await asyncio.gather(
        *(_dispatch_one(engine, intent) for intent in claimed),
        return_exceptions=True,
    )
    for intent, outcome in zip(claimed, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, PostIntent) and outcome.status is IntentStatus.PUBLISHED:
            summary.published += 1
        elif isinstance(outcome, SyndicateError) and outcome.snapshot is not None:
            # Recorded as failed by the engine.
            summary.failed += 1
        elif isinstance(outcome, BaseException):
            summary.errors += 1
            logger.error(
                "Dispatch raised unexpectedly: %r",
                outcome,
                extra={"intent_id": intent.intent_id},
            )
    logger.info(
        "Sweep finished: %s candidates, %s claimed, %s published, %s failed",
        summary.candidates,
        summary.claimed,
        summary.published,
        summary.failed,
    )
    return summary


async def _dispatch_one(engine: Dispatcher, intent: PostIntent) -> PostIntent:
    try:
        return await engine.dispatch(intent)
    except ClaimConflict:
        logger.info("Intent claimed elsewhere", extra={"intent_id": intent.intent_id})
        raise


class SchedulerRunner:
    """Periodic task running :func:`run_sweep`; owns no global state.

    Each sweep runs as its own task so a slow platform never delays the next
    tick. ``stop`` cancels the ticker and any in-flight sweeps.
    """

    def __init__(
        self,
        store: SQLiteIntentStore,
        engine: Dispatcher,
        *,
        interval_seconds: float = 60.0,
        stale_claim_ms: int = DEFAULT_STALE_CLAIM_MS,
        clock: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self._store = store
        self._engine = engine
        self._interval = interval_seconds
        self._stale_claim_ms = stale_claim_ms
        self._clock = clock
        self._ticker: Optional[asyncio.Task] = None
        self._sweeps: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def start(self) -> None:
        if self.running:
            return
        self._ticker = asyncio.create_task(self._tick_forever(), name="scheduler-ticker")
        logger.info("Scheduler started with %.0fs interval", self._interval)

    async def stop(self) -> None:
        tasks = list(self._sweeps)
        if self._ticker is not None:
            tasks.append(self._ticker)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._ticker = None
        self._sweeps.clear()
        logger.info("Scheduler stopped")

    def trigger(self) -> asyncio.Task:
        """Launch one sweep now, independent of the tick cadence."""
        task = asyncio.create_task(
            run_sweep(
                self._clock(),
                self._store,
                self._engine,
                stale_claim_ms=self._stale_claim_ms,
            )
        )
        self._sweeps.add(task)
        task.add_done_callback(self._sweep_done)
        return task

    def _sweep_done(self, task: asyncio.Task) -> None:
        self._sweeps.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sweep crashed: %r", exc)

    async def _tick_forever(self) -> None:
        while True:
            self.trigger()
            await asyncio.sleep(self._interval)


__all__ = ["DEFAULT_STALE_CLAIM_MS", "SchedulerRunner", "SweepSummary", "run_sweep"]
