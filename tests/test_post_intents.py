try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from syndicate.clients.idempotency_store import SQLiteIdempotencyStore
from syndicate.core.errors import (
    InvalidState,
    NotConnected,
    NotFound,
    QuotaExceeded,
    UnsupportedPlatform,
)
from syndicate.models.intents import IntentStatus, MediaRef, PostContent, PublishResult
from syndicate.services.billing import (
    SCHEDULED_POSTS,
    BillingWebhookProcessor,
    PlanLimitService,
    month_start_ms,
    sign_webhook,
)
from syndicate.services.post_intents import PostIntentService

# 2024-03-15T12:00:00Z
NOW_MS = 1_710_504_000_000


class EchoDispatcher:
    def __init__(self) -> None:
        self.intents = []

    async def dispatch(self, intent, *, correlation_id=None):
        self.intents.append(intent)
        return intent


@pytest.fixture
def plans(record_store, intent_store) -> PlanLimitService:
    return PlanLimitService(record_store, intent_store, clock=lambda: NOW_MS)


@pytest.fixture
def service(intent_store, plans) -> PostIntentService:
    return PostIntentService(intent_store, plans, EchoDispatcher(), clock=lambda: NOW_MS)


def test_create_defaults_to_immediate_schedule(service, intent_store) -> None:
    intent = service.create("user-1", "twitter", PostContent(text="hi"))

    assert intent.platform_id == "x"
    assert intent.scheduled_at == NOW_MS
    assert intent.status is IntentStatus.SCHEDULED
    assert intent_store.get(intent.intent_id).content.text == "hi"


def test_create_validates_platform_and_content(service) -> None:
    with pytest.raises(UnsupportedPlatform):
        service.create("user-1", "myspace", PostContent(text="hi"))
    with pytest.raises(ValueError):
        service.create("user-1", "x", PostContent(text="   "))

    with_media = service.create(
        "user-1", "instagram", PostContent(text="", media=(MediaRef(url="https://cdn/x.jpg"),))
    )
    assert with_media.content.media[0].url == "https://cdn/x.jpg"


def test_quota_rejection_creates_no_intent(service, intent_store) -> None:
    for _ in range(10):
        service.create("user-1", "x", PostContent(text="post"), scheduled_at=NOW_MS + 60_000)

    with pytest.raises(QuotaExceeded) as excinfo:
        service.create("user-1", "x", PostContent(text="one too many"))

    assert excinfo.value.plan == "free"
    assert len(intent_store.list_for_user("user-1", limit=100)) == 10


def test_cancelled_intents_do_not_count_toward_quota(service, plans) -> None:
    intents = [service.create("user-1", "x", PostContent(text="post")) for _ in range(10)]
    service.cancel("user-1", intents[0].intent_id)

    service.create("user-1", "x", PostContent(text="fits again"))
    assert plans.usage("user-1", "scheduled_posts") == 10


def test_paid_plan_raises_the_limit(service, plans) -> None:
    plans.set_subscription("user-1", "pro")
    for _ in range(11):
        service.create("user-1", "x", PostContent(text="post"))
    assert plans.usage("user-1", "scheduled_posts") == 11


def test_inactive_subscription_is_rejected(service, plans) -> None:
    plans.set_subscription("user-1", "pro", status="past_due")
    with pytest.raises(QuotaExceeded):
        service.create("user-1", "x", PostContent(text="post"))


def test_cancel_only_from_scheduled(service, intent_store) -> None:
    intent = service.create("user-1", "x", PostContent(text="later"), scheduled_at=NOW_MS + 1)

    cancelled = service.cancel("user-1", intent.intent_id)
    assert cancelled.status is IntentStatus.CANCELLED

    with pytest.raises(InvalidState):
        service.cancel("user-1", intent.intent_id)

    dispatched = service.create("user-1", "x", PostContent(text="now"))
    claimed = intent_store.claim(dispatched.intent_id, now_ms=NOW_MS)
    with pytest.raises(InvalidState):
        service.cancel("user-1", dispatched.intent_id)

    intent_store.mark_published(
        dispatched.intent_id,
        claim_token=claimed.claim_token,
        result=PublishResult("remote-1"),
        now_ms=NOW_MS,
    )
    with pytest.raises(InvalidState):
        service.cancel("user-1", dispatched.intent_id)


def test_get_hides_other_users_intents(service) -> None:
    intent = service.create("user-1", "x", PostContent(text="mine"))
    with pytest.raises(NotFound):
        service.get("user-2", intent.intent_id)
    with pytest.raises(NotFound):
        service.cancel("user-2", intent.intent_id)


def test_list_filters_by_status(service) -> None:
    keep = service.create("user-1", "x", PostContent(text="keep"))
    drop = service.create("user-1", "x", PostContent(text="drop"))
    service.cancel("user-1", drop.intent_id)

    scheduled = service.list_for_user("user-1", status=IntentStatus.SCHEDULED)
    assert [i.intent_id for i in scheduled] == [keep.intent_id]


@pytest.mark.asyncio
async def test_publish_now_hands_intent_to_dispatcher(intent_store, plans) -> None:
    dispatcher = EchoDispatcher()
    service = PostIntentService(intent_store, plans, dispatcher, clock=lambda: NOW_MS)

    intent = await service.publish_now("user-1", "linkedin", PostContent(text="now"))

    assert dispatcher.intents == [intent]
    assert intent_store.get(intent.intent_id) is not None


@pytest.mark.asyncio
async def test_publish_now_to_unconnected_platform_creates_no_intent(intent_store, plans) -> None:
    dispatcher = EchoDispatcher()
    checked: list[tuple[str, str]] = []

    def is_connected(user_id: str, platform_id: str) -> bool:
        checked.append((user_id, platform_id))
        return False

    service = PostIntentService(
        intent_store, plans, dispatcher, is_connected=is_connected, clock=lambda: NOW_MS
    )

    with pytest.raises(NotConnected):
        await service.publish_now("user-1", "twitter", PostContent(text="now"))

    assert checked == [("user-1", "x")]
    assert dispatcher.intents == []
    assert plans.usage("user-1", SCHEDULED_POSTS) == 0


def test_month_start() -> None:
    # 2024-03-01T00:00:00Z
    assert month_start_ms(NOW_MS) == 1_709_251_200_000


def test_plan_normalization_uses_free_plan_cache(plans) -> None:
    assert plans.normalize_plan("Pro Monthly") == "pro"
    assert plans.normalize_plan("Business Plus") == "business_plus"
    assert plans.normalize_plan("starter") == "free"

    plans.set_free_plan_ids(["pro_trial"])
    assert plans.normalize_plan("pro_trial") == "free"
    assert plans.normalize_plan("starter") == "free"


def test_billing_webhook_applies_events_once(db_path, plans) -> None:
    processor = BillingWebhookProcessor(SQLiteIdempotencyStore(db_path), plans, secret="whsec")
    event = {
        "id": "evt-1",
        "type": "subscription.updated",
        "data": {"user_id": "user-1", "plan": "business", "status": "active"},
    }

    assert processor.handle(event) is True
    assert plans.subscription("user-1") == {"plan": "business", "status": "active"}

    plans.set_subscription("user-1", "pro")
    assert processor.handle(event) is False
    assert plans.subscription("user-1")["plan"] == "pro"


def test_billing_webhook_skips_event_claimed_elsewhere(db_path, plans) -> None:
    idempotency = SQLiteIdempotencyStore(db_path)
    processor = BillingWebhookProcessor(idempotency, plans, secret="whsec")
    assert idempotency.mark_processed("evt-3", "subscription.updated") is True

    applied = processor.handle(
        {
            "id": "evt-3",
            "type": "subscription.updated",
            "data": {"user_id": "user-1", "plan": "business", "status": "active"},
        }
    )

    assert applied is False
    assert plans.subscription("user-1")["plan"] == "free"


def test_billing_webhook_failure_releases_claim(db_path, plans) -> None:
    idempotency = SQLiteIdempotencyStore(db_path)
    processor = BillingWebhookProcessor(idempotency, plans, secret="whsec")
    event = {"id": "evt-4", "type": "subscription.updated", "data": {"plan": "pro"}}

    with pytest.raises(KeyError):
        processor.handle(event)
    assert idempotency.is_processed("evt-4") is False

    event["data"]["user_id"] = "user-1"
    assert processor.handle(event) is True
    assert plans.subscription("user-1")["plan"] == "pro"


def test_billing_webhook_signature(db_path, plans) -> None:
    processor = BillingWebhookProcessor(SQLiteIdempotencyStore(db_path), plans, secret="whsec")
    body = b'{"id": "evt-2"}'

    processor.verify_signature(body, sign_webhook("whsec", body))
    with pytest.raises(InvalidState):
        processor.verify_signature(body, "bad-signature")
    with pytest.raises(InvalidState):
        processor.verify_signature(body, None)


def test_billing_webhook_requires_event_id(db_path, plans) -> None:
    processor = BillingWebhookProcessor(SQLiteIdempotencyStore(db_path), plans)
    with pytest.raises(ValueError):
        processor.handle({"type": "subscription.created"})
