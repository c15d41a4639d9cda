"""
Create, list and cancel post intents.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional, Protocol
from uuid import uuid4

from syndicate.clients.intent_store import SQLiteIntentStore
from syndicate.core.errors import InvalidState, NotConnected, NotFound
from syndicate.models.intents import IntentStatus, PostContent, PostIntent
from syndicate.services.platform_registry import get_adapter
from syndicate.utils.clock import now_ms

logger = logging.getLogger(__name__)


class LimitChecker(Protocol):
    def check_limit(self, user_id: str, resource: str, amount: int = 1) -> None: ...


class IntentDispatcher(Protocol):
    async def dispatch(
        self, intent: PostIntent, *, correlation_id: Optional[str] = None
    ) -> PostIntent: ...


class PostIntentService:
    def __init__(
        self,
        intents: SQLiteIntentStore,
        limits: LimitChecker,
        dispatcher: IntentDispatcher,
        *,
        is_connected: Optional[Callable[[str, str], bool]] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._intents = intents
        self._limits = limits
        self._dispatcher = dispatcher
        self._is_connected = is_connected
        self._clock = clock

    def create(
        self,
        user_id: str,
        platform_id: str,
        content: PostContent,
        *,
        scheduled_at: Optional[int] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> PostIntent:
        """Persist a new intent after the plan-limit check.

        ``scheduled_at`` of ``None`` means now. A rejected quota check raises
        ``QuotaExceeded`` before anything is written.
        """
        adapter = get_adapter(platform_id)
        if not content.text.strip() and not content.media:
            raise ValueError("Post content must include text or media.")

        self._limits.check_limit(user_id, "scheduled_posts", 1)

        created_at = self._clock()
        intent = PostIntent(
            intent_id=uuid4().hex,
            user_id=user_id,
            platform_id=adapter.platform_id.value,
            content=content,
            options=dict(options or {}),
            scheduled_at=scheduled_at if scheduled_at is not None else created_at,
            created_at=created_at,
            updated_at=created_at,
        )
        self._intents.insert(intent)
        logger.info(
            "Created post intent for %s",
            intent.platform_id,
            extra={"intent_id": intent.intent_id, "user_id": user_id},
        )
        return intent

    async def publish_now(
        self,
        user_id: str,
        platform_id: str,
        content: PostContent,
        *,
        options: Optional[Mapping[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> PostIntent:
        """Create an immediate intent and dispatch it in the caller's task.

        An unconnected platform raises ``NotConnected`` before any intent is
        written, so the attempt does not count against the plan limit.
        """
        platform_id = get_adapter(platform_id).platform_id.value
        if self._is_connected is not None and not self._is_connected(user_id, platform_id):
            raise NotConnected(f"{platform_id} is not connected.")
        intent = self.create(user_id, platform_id, content, options=options)
        return await self._dispatcher.dispatch(intent, correlation_id=correlation_id)

    def get(self, user_id: str, intent_id: str) -> PostIntent:
        intent = self._intents.get(intent_id)
        if intent is None or intent.user_id != user_id:
            raise NotFound(f"Post intent {intent_id} was not found.")
        return intent

    def list_for_user(
        self,
        user_id: str,
        *,
        status: Optional[IntentStatus] = None,
        limit: int = 50,
    ) -> List[PostIntent]:
        return self._intents.list_for_user(user_id, status=status, limit=limit)

    def cancel(self, user_id: str, intent_id: str) -> PostIntent:
        """Cancel a still-scheduled intent; any other status is rejected."""
        intent = self.get(user_id, intent_id)
        if not self._intents.cancel(intent_id, user_id=user_id, now_ms=self._clock()):
            current = self._intents.get(intent_id) or intent
            raise InvalidState(
                f"Intent {intent_id} is {current.status.value} and can no longer be cancelled."
            )
        logger.info("Cancelled post intent", extra={"intent_id": intent_id, "user_id": user_id})
        return self._intents.get(intent_id) or intent


__all__ = ["IntentDispatcher", "LimitChecker", "PostIntentService"]
