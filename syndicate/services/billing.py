"""
Billing boundary: plan limits, subscription webhooks and the analytics sink.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Generic, Optional, TypeVar

from syndicate.clients.idempotency_store import SQLiteIdempotencyStore
from syndicate.clients.intent_store import SQLiteIntentStore
from syndicate.clients.sqlite_store import SQLiteStore
from syndicate.core.errors import InvalidState, QuotaExceeded
from syndicate.utils.clock import from_ms, now_ms, to_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEDULED_POSTS = "scheduled_posts"
UNLIMITED = -1

PLAN_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {SCHEDULED_POSTS: 10},
    "pro": {SCHEDULED_POSTS: 100},
    "business": {SCHEDULED_POSTS: 500},
    "business_plus": {SCHEDULED_POSTS: UNLIMITED},
}
ACTIVE_STATUSES = frozenset({"active", "trialing"})
DEFAULT_FREE_PLAN_IDS: FrozenSet[str] = frozenset({"free", "trial", "starter"})

_BILLING_PARTITION = "billing"
_FREE_PLANS_KEY = "config#free_plans"


class CachedValue(Generic[T]):
    """Lazily loaded value with explicit invalidation."""

    def __init__(self, loader: Callable[[], T]) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._loaded = False
        self._value: Optional[T] = None

    def get(self) -> T:
        with self._lock:
            if not self._loaded:
                self._value = self._loader()
                self._loaded = True
            return self._value  # type: ignore[return-value]

    def invalidate(self) -> None:
        with self._lock:
            self._loaded = False
            self._value = None


def month_start_ms(current_ms: int) -> int:
    current = from_ms(current_ms)
    return to_ms(datetime(current.year, current.month, 1, tzinfo=timezone.utc))


class PlanLimitService:
    """Answer ``check_limit`` from the stored subscription and this month's usage."""

    def __init__(
        self,
        store: SQLiteStore,
        intents: SQLiteIntentStore,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._intents = intents
        self._clock = clock
        self.free_plan_ids: CachedValue[FrozenSet[str]] = CachedValue(self._load_free_plan_ids)

    def _load_free_plan_ids(self) -> FrozenSet[str]:
        record = self._store.get_item(
            partition_key=_BILLING_PARTITION, sort_key=_FREE_PLANS_KEY
        )
        if not record or not record.get("plan_ids"):
            return DEFAULT_FREE_PLAN_IDS
        return frozenset(_normalize(p) for p in record["plan_ids"])

    def set_free_plan_ids(self, plan_ids: list[str]) -> None:
        self._store.put_item(
            {"pk": _BILLING_PARTITION, "sk": _FREE_PLANS_KEY, "plan_ids": list(plan_ids)}
        )
        self.free_plan_ids.invalidate()

    def normalize_plan(self, raw_plan: Optional[str]) -> str:
        normalized = _normalize(raw_plan or "free")
        if normalized in self.free_plan_ids.get():
            return "free"
        if "businessplus" in normalized:
            return "business_plus"
        if "pro" in normalized:
            return "pro"
        if "business" in normalized:
            return "business"
        return "free"

    def subscription(self, user_id: str) -> Dict[str, Any]:
        record = self._store.get_item(
            partition_key=f"user#{user_id}", sort_key="subscription"
        )
        if not record:
            return {"plan": "free", "status": "active"}
        return {
            "plan": self.normalize_plan(record.get("plan")),
            "status": record.get("status") or "active",
        }

    def set_subscription(self, user_id: str, plan: str, status: str = "active") -> None:
        self._store.put_item(
            {
                "pk": f"user#{user_id}",
                "sk": "subscription",
                "plan": plan,
                "status": status,
                "updated_at": self._clock(),
            }
        )
        logger.info("Subscription set to %s (%s)", plan, status, extra={"user_id": user_id})

    def usage(self, user_id: str, resource: str) -> int:
        if resource != SCHEDULED_POSTS:
            return 0
        return self._intents.count_created_since(user_id, month_start_ms(self._clock()))

    def check_limit(self, user_id: str, resource: str, amount: int = 1) -> None:
        """Raise ``QuotaExceeded`` when ``amount`` more of ``resource`` is not allowed."""
        subscription = self.subscription(user_id)
        plan = subscription["plan"]
        if subscription["status"] not in ACTIVE_STATUSES:
            raise QuotaExceeded("Subscription is not active.", plan=plan)

        limit = PLAN_LIMITS.get(plan, PLAN_LIMITS["free"]).get(resource)
        if limit is None or limit == UNLIMITED:
            return
        used = self.usage(user_id, resource)
        if used + amount > limit:
            raise QuotaExceeded(
                f"The {plan} plan allows {limit} {resource.replace('_', ' ')} per month.",
                plan=plan,
            )


class RecordStoreAnalyticsSink:
    """Persist one analytics record per published post."""

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    def record_publish(self, event: Dict[str, Any]) -> None:
        self._store.put_item(
            {
                "pk": f"user#{event['userId']}",
                "sk": f"analytics#{event['platformId']}#{event['remoteId']}",
                **event,
            }
        )


def sign_webhook(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class BillingWebhookProcessor:
    """Apply subscription events exactly once."""

    def __init__(
        self,
        idempotency: SQLiteIdempotencyStore,
        plans: PlanLimitService,
        *,
        secret: Optional[str] = None,
    ) -> None:
        self._idempotency = idempotency
        self._plans = plans
        self._secret = secret

    def verify_signature(self, body: bytes, signature: Optional[str]) -> None:
        if not self._secret:
            return
        expected = sign_webhook(self._secret, body)
        if not signature or not hmac.compare_digest(expected, signature.strip()):
            raise InvalidState("Invalid webhook signature.")

    def handle(self, event: Dict[str, Any]) -> bool:
        """Apply ``event``; returns ``False`` for a duplicate delivery."""
        event_id = event.get("id")
        event_type = event.get("type") or ""
        if not event_id:
            raise ValueError("Webhook event is missing an id.")
        if not self._idempotency.mark_processed(event_id, event_type):
            logger.info("Skipping duplicate billing event %s", event_id)
            return False

        try:
            self._apply(event_type, event.get("data") or {})
        except Exception:
            # Let a redelivery apply it.
            self._idempotency.release(event_id)
            raise
        return True

    def _apply(self, event_type: str, data: Dict[str, Any]) -> None:
        if event_type in ("subscription.created", "subscription.updated"):
            self._plans.set_subscription(
                data["user_id"],
                self._plans.normalize_plan(data.get("plan")),
                data.get("status") or "active",
            )
        elif event_type == "subscription.deleted":
            self._plans.set_subscription(data["user_id"], "free", "active")
        elif event_type == "plans.updated":
            self._plans.set_free_plan_ids(list(data.get("free_plan_ids") or []))
        else:
            logger.info("Ignoring billing event type %s", event_type)


def _normalize(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


__all__ = [
    "BillingWebhookProcessor",
    "CachedValue",
    "PLAN_LIMITS",
    "PlanLimitService",
    "RecordStoreAnalyticsSink",
    "SCHEDULED_POSTS",
    "month_start_ms",
    "sign_webhook",
]
