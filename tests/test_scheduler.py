try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from uuid import uuid4

import pytest

from syndicate.core.errors import DispatchFailed, NotConnected
from syndicate.models.intents import IntentStatus, PostContent, PostIntent, PublishResult
from syndicate.services.scheduler import SchedulerRunner, run_sweep

STALE_MS = 15 * 60 * 1000


class FakeEngine:
    """Records dispatched intents and finishes them through the store."""

    def __init__(self, store, fail_ids: set[str] | None = None) -> None:
        self.store = store
        self.fail_ids = fail_ids or set()
        self.dispatched: list[str] = []

    async def dispatch(self, intent: PostIntent, *, correlation_id=None) -> PostIntent:
        assert intent.status is IntentStatus.DISPATCHING
        self.dispatched.append(intent.intent_id)
        await asyncio.sleep(0)
        if intent.intent_id in self.fail_ids:
            self.store.mark_failed(
                intent.intent_id, claim_token=intent.claim_token, error={"code": "x"}, now_ms=1
            )
            raise DispatchFailed("boom", snapshot={"code": "x"})
        self.store.mark_published(
            intent.intent_id,
            claim_token=intent.claim_token,
            result=PublishResult(remote_id=f"remote-{intent.intent_id}"),
            now_ms=1,
        )
        return self.store.get(intent.intent_id)


def _insert(store, *, scheduled_at: int) -> PostIntent:
    return store.insert(
        PostIntent(
            intent_id=uuid4().hex,
            user_id="user-1",
            platform_id="x",
            content=PostContent(text="scheduled post"),
            scheduled_at=scheduled_at,
            created_at=0,
            updated_at=0,
        )
    )


def test_claim_has_a_single_winner(intent_store) -> None:
    intent = _insert(intent_store, scheduled_at=0)

    first = intent_store.claim(intent.intent_id, now_ms=10)
    second = intent_store.claim(intent.intent_id, now_ms=10)

    assert first is not None and first.claim_token
    assert second is None
    assert intent_store.get(intent.intent_id).attempts == 1


def test_finish_requires_current_claim_token(intent_store) -> None:
    intent = _insert(intent_store, scheduled_at=0)
    claimed = intent_store.claim(intent.intent_id, now_ms=10)

    assert not intent_store.mark_published(
        intent.intent_id, claim_token="someone-else", result=PublishResult("r"), now_ms=11
    )
    assert intent_store.mark_published(
        intent.intent_id, claim_token=claimed.claim_token, result=PublishResult("r"), now_ms=11
    )
    assert not intent_store.mark_failed(
        intent.intent_id, claim_token=claimed.claim_token, error={}, now_ms=12
    )
    assert intent_store.get(intent.intent_id).status is IntentStatus.PUBLISHED


@pytest.mark.asyncio
async def test_sweep_dispatches_due_intents_only(intent_store) -> None:
    due = _insert(intent_store, scheduled_at=1_000)
    future = _insert(intent_store, scheduled_at=10_000)
    engine = FakeEngine(intent_store)

    summary = await run_sweep(5_000, intent_store, engine, stale_claim_ms=STALE_MS)

    assert engine.dispatched == [due.intent_id]
    assert summary.candidates == 1
    assert summary.published == 1
    assert intent_store.get(due.intent_id).status is IntentStatus.PUBLISHED
    assert intent_store.get(future.intent_id).status is IntentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_overlapping_sweeps_dispatch_each_intent_once(intent_store) -> None:
    intents = [_insert(intent_store, scheduled_at=0) for _ in range(5)]
    engine = FakeEngine(intent_store)

    await asyncio.gather(
        run_sweep(1_000, intent_store, engine, stale_claim_ms=STALE_MS),
        run_sweep(1_000, intent_store, engine, stale_claim_ms=STALE_MS),
    )

    assert sorted(engine.dispatched) == sorted(i.intent_id for i in intents)


@pytest.mark.asyncio
async def test_failed_intents_are_not_retried(intent_store) -> None:
    intent = _insert(intent_store, scheduled_at=0)
    engine = FakeEngine(intent_store, fail_ids={intent.intent_id})

    first = await run_sweep(1_000, intent_store, engine, stale_claim_ms=STALE_MS)
    second = await run_sweep(2_000_000, intent_store, engine, stale_claim_ms=STALE_MS)

    assert first.failed == 1
    assert second.candidates == 0
    assert engine.dispatched == [intent.intent_id]
    assert intent_store.get(intent.intent_id).status is IntentStatus.FAILED


@pytest.mark.asyncio
async def test_not_connected_failure_counts_as_failed(intent_store) -> None:
    intent = _insert(intent_store, scheduled_at=0)

    class DisconnectedEngine:
        async def dispatch(self, claimed, *, correlation_id=None):
            snapshot = {"code": "not_connected"}
            intent_store.mark_failed(
                claimed.intent_id, claim_token=claimed.claim_token, error=snapshot, now_ms=1
            )
            error = NotConnected("x is not connected.")
            error.snapshot = snapshot
            raise error

    summary = await run_sweep(1_000, intent_store, DisconnectedEngine(), stale_claim_ms=STALE_MS)

    assert summary.failed == 1
    assert summary.errors == 0
    assert intent_store.get(intent.intent_id).status is IntentStatus.FAILED


@pytest.mark.asyncio
async def test_stale_claim_is_reclaimed(intent_store) -> None:
    intent = _insert(intent_store, scheduled_at=0)
    abandoned = intent_store.claim(intent.intent_id, now_ms=1_000)
    engine = FakeEngine(intent_store)

    fresh = await run_sweep(1_000 + STALE_MS - 1, intent_store, engine, stale_claim_ms=STALE_MS)
    assert fresh.candidates == 0

    summary = await run_sweep(1_000 + STALE_MS + 1, intent_store, engine, stale_claim_ms=STALE_MS)

    assert summary.claimed == 1
    stored = intent_store.get(intent.intent_id)
    assert stored.status is IntentStatus.PUBLISHED
    assert stored.attempts == 2
    assert not intent_store.mark_failed(
        intent.intent_id, claim_token=abandoned.claim_token, error={}, now_ms=1
    )


@pytest.mark.asyncio
async def test_sweep_counts_unexpected_errors(intent_store) -> None:
    _insert(intent_store, scheduled_at=0)

    class BrokenEngine:
        async def dispatch(self, intent, *, correlation_id=None):
            raise RuntimeError("engine bug")

    summary = await run_sweep(1_000, intent_store, BrokenEngine(), stale_claim_ms=STALE_MS)

    assert summary.claimed == 1
    assert summary.errors == 1


@pytest.mark.asyncio
async def test_runner_trigger_and_stop(intent_store) -> None:
    intent = _insert(intent_store, scheduled_at=0)
    engine = FakeEngine(intent_store)
    runner = SchedulerRunner(
        intent_store, engine, interval_seconds=3600, stale_claim_ms=STALE_MS, clock=lambda: 1_000
    )

    summary = await runner.trigger()
    assert summary.published == 1
    assert intent_store.get(intent.intent_id).status is IntentStatus.PUBLISHED

    runner.start()
    assert runner.running
    await runner.stop()
    assert not runner.running
