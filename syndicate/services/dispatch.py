"""
Dispatch engine: turn one claimed post intent into a platform API call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, NoReturn, Optional, Protocol
from uuid import uuid4

import httpx

from syndicate.clients.intent_store import SQLiteIntentStore
from syndicate.clients.publishers import PlatformHTTP, PublishRequest
from syndicate.core.errors import (
    ClaimConflict,
    DispatchFailed,
    IntegrityError,
    NotConnected,
    NotFound,
    RetryExhaustedError,
    SyndicateError,
    TokenExchangeError,
    UnsupportedPlatform,
    UpstreamHTTPError,
)
from syndicate.models.credentials import PlatformCredential
from syndicate.models.intents import IntentStatus, PostIntent, PublishResult
from syndicate.services.credential_refresh import CredentialRefresher
from syndicate.services.credential_vault import CredentialVault
from syndicate.services.platform_registry import PlatformAdapter, RefreshStrategy, get_adapter
from syndicate.services.request_executor import ExecutionReport, RequestExecutor
from syndicate.utils.clock import now_ms
from syndicate.utils.http import build_idempotency_key, scrub_secrets

logger = logging.getLogger(__name__)


class AnalyticsSink(Protocol):
    def record_publish(self, event: Dict[str, Any]) -> None: ...


class DispatchEngine:
    """Resolve the adapter, execute the publish and record the final status.

    ``dispatch`` always leaves the intent ``published`` or ``failed`` unless
    the task is cancelled, in which case the claim is handed back.
    """

    def __init__(
        self,
        intents: SQLiteIntentStore,
        vault: CredentialVault,
        refresher: CredentialRefresher,
        executor: RequestExecutor,
        *,
        analytics: Optional[AnalyticsSink] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_timeout: float = 30.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._intents = intents
        self._vault = vault
        self._refresher = refresher
        self._executor = executor
        self._analytics = analytics
        self._transport = transport
        self._request_timeout = request_timeout
        self._clock = clock

    async def dispatch(
        self, intent: PostIntent, *, correlation_id: Optional[str] = None
    ) -> PostIntent:
        """Publish ``intent`` and return its final state.

        A ``scheduled`` intent is claimed here; a ``dispatching`` intent must
        carry the claim token from the caller's own claim. Raises
        ``DispatchFailed``, or ``NotConnected``/``UnsupportedPlatform`` when
        the intent never reached the platform, after recording a failure.
        """
        claimed = self._take_claim(intent)
        correlation_id = correlation_id or uuid4().hex
        try:
            return await self._run(claimed, correlation_id)
        except asyncio.CancelledError:
            released = self._intents.release(
                claimed.intent_id, claim_token=claimed.claim_token or "", now_ms=self._clock()
            )
            logger.warning(
                "Dispatch cancelled; claim released=%s",
                released,
                extra={"intent_id": claimed.intent_id, "correlation_id": correlation_id},
            )
            raise

    def _take_claim(self, intent: PostIntent) -> PostIntent:
        if intent.status is IntentStatus.SCHEDULED:
            claimed = self._intents.claim(intent.intent_id, now_ms=self._clock())
            if claimed is None:
                raise ClaimConflict(f"Intent {intent.intent_id} is already being dispatched.")
            return claimed
        if intent.status is IntentStatus.DISPATCHING and intent.claim_token:
            return intent
        if intent.status.is_terminal:
            raise ClaimConflict(
                f"Intent {intent.intent_id} already finished as {intent.status.value}."
            )
        raise ClaimConflict(
            f"Intent {intent.intent_id} is {intent.status.value} and cannot be dispatched."
        )

    async def _run(self, intent: PostIntent, correlation_id: str) -> PostIntent:
        log_extra = {"intent_id": intent.intent_id, "correlation_id": correlation_id}
        adapter: Optional[PlatformAdapter] = None
        credential: Optional[PlatformCredential] = None
        report: Optional[ExecutionReport] = None
        try:
            adapter = get_adapter(intent.platform_id)
            credential = self._load_credential(intent)
            result = await self._executor.execute(
                self._operation(adapter, intent),
                credential=credential,
                refresher=self._refresher_for(adapter, intent.user_id),
                is_auth_failure=adapter.is_auth_failure,
                correlation_id=correlation_id,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if isinstance(exc, RetryExhaustedError):
                report = exc.report
            return self._record_failure(intent, exc, adapter, credential, report, correlation_id)

        publish_result: PublishResult = result.value
        published_at = self._clock()
        won = self._intents.mark_published(
            intent.intent_id,
            claim_token=intent.claim_token or "",
            result=publish_result,
            now_ms=published_at,
        )
        if not won:
            logger.warning("Claim was lost before the publish was recorded", extra=log_extra)
        logger.info(
            "Published to %s as %s",
            intent.platform_id,
            publish_result.remote_id,
            extra=log_extra,
        )
        self._emit_analytics(intent, publish_result, published_at)
        return self._intents.get(intent.intent_id) or intent

    def _load_credential(self, intent: PostIntent) -> PlatformCredential:
        try:
            return self._vault.retrieve(intent.user_id, intent.platform_id)
        except NotFound as exc:
            raise NotConnected(f"{intent.platform_id} is not connected.") from exc
        except IntegrityError as exc:
            logger.error(
                "Stored credential failed integrity check; treating as not connected",
                extra={"intent_id": intent.intent_id, "platform_id": intent.platform_id},
            )
            raise NotConnected(
                f"{intent.platform_id} must be reconnected; the stored credential is unreadable."
            ) from exc

    def _refresher_for(self, adapter: PlatformAdapter, user_id: str):
        if adapter.refresh_strategy is RefreshStrategy.NONE:
            return None

        async def _refresh(credential: PlatformCredential) -> PlatformCredential:
            return await self._refresher.refresh(user_id, adapter, credential)

        return _refresh

    def _operation(self, adapter: PlatformAdapter, intent: PostIntent):
        idempotency_key = build_idempotency_key(
            intent.platform_id, intent.user_id, intent.content.text, intent.created_at
        )

        async def _publish(credential: PlatformCredential) -> PublishResult:
            async with httpx.AsyncClient(
                timeout=self._request_timeout, transport=self._transport
            ) as client:
                http = PlatformHTTP(
                    client,
                    platform_id=adapter.platform_id.value,
                    idempotency_header=adapter.idempotency_header,
                    idempotency_key=idempotency_key,
                )
                request = PublishRequest(
                    content=intent.content, credential=credential, options=intent.options
                )
                return await adapter.publish(http, request)

        return _publish

    def _record_failure(
        self,
        intent: PostIntent,
        exc: Exception,
        adapter: Optional[PlatformAdapter],
        credential: Optional[PlatformCredential],
        report: Optional[ExecutionReport],
        correlation_id: str,
    ) -> NoReturn:
        """Record the failure, then raise.

        A missing connection or unknown platform keeps its own type so callers
        can tell it from an upstream failure; everything else becomes
        ``DispatchFailed``. Both carry the snapshot.
        """
        snapshot = build_failure_snapshot(
            exc,
            platform_id=intent.platform_id,
            correlation_id=correlation_id,
            report=report,
            is_auth_failure=adapter.is_auth_failure if adapter else None,
        )
        snapshot = scrub_secrets(snapshot, self._known_secrets(intent, credential))
        self._intents.mark_failed(
            intent.intent_id,
            claim_token=intent.claim_token or "",
            error=snapshot,
            now_ms=self._clock(),
        )
        logger.error(
            "Dispatch failed: %s",
            snapshot["message"],
            extra={"intent_id": intent.intent_id, "correlation_id": correlation_id},
        )
        cause = exc.last_error if isinstance(exc, RetryExhaustedError) else exc
        if isinstance(cause, (NotConnected, UnsupportedPlatform)):
            cause.snapshot = snapshot
            raise cause
        raise DispatchFailed(snapshot["message"], snapshot=snapshot) from exc

    def _known_secrets(
        self, intent: PostIntent, credential: Optional[PlatformCredential]
    ) -> List[str]:
        secrets = credential.secret_values() if credential else []
        if credential is not None:
            # A refresh during execution may have stored newer secrets.
            try:
                secrets += self._vault.retrieve(intent.user_id, intent.platform_id).secret_values()
            except SyndicateError as exc:
                logger.debug("Could not reload credential for scrubbing: %s", exc.code)
        return secrets

    def _emit_analytics(
        self, intent: PostIntent, result: PublishResult, published_at: int
    ) -> None:
        if self._analytics is None:
            return
        try:
            self._analytics.record_publish(
                {
                    "userId": intent.user_id,
                    "platformId": intent.platform_id,
                    "remoteId": result.remote_id,
                    "publishedAt": published_at,
                }
            )
        except Exception:
            logger.exception(
                "Analytics sink failed; publish stays recorded",
                extra={"intent_id": intent.intent_id},
            )


def build_failure_snapshot(
    exc: BaseException,
    *,
    platform_id: str,
    correlation_id: str,
    report: Optional[ExecutionReport] = None,
    is_auth_failure: Optional[Callable[[BaseException], bool]] = None,
) -> Dict[str, Any]:
    """Structured, human-readable failure record for a dispatch attempt.

    ``is_auth_failure`` is the adapter's detector, for platforms that report
    a rejected token with something other than 401 or 403.
    """
    cause = exc.last_error if isinstance(exc, RetryExhaustedError) else exc
    upstream_status = None
    upstream_body = None

    if isinstance(cause, UpstreamHTTPError):
        upstream_status = cause.status_code
        upstream_body = cause.body
        if cause.status_code in (401, 403) or (is_auth_failure and is_auth_failure(cause)):
            code = "auth_rejected"
            message = f"{platform_id} rejected the stored credential; reconnect the account."
        elif cause.status_code == 429:
            code = "rate_limited"
            message = f"{platform_id} rate limited the request; try again later."
        elif cause.status_code >= 500:
            code = "upstream_unavailable"
            message = f"{platform_id} was unavailable (HTTP {cause.status_code})."
        else:
            code = "upstream_rejected"
            message = f"{platform_id} rejected the post (HTTP {cause.status_code})."
    elif isinstance(cause, TokenExchangeError):
        code = "refresh_failed"
        upstream_status = cause.status_code
        message = f"Could not refresh the {platform_id} credential; reconnect the account."
    elif isinstance(cause, (httpx.TransportError, asyncio.TimeoutError, TimeoutError)):
        code = "network_error"
        message = f"Could not reach {platform_id}."
    elif isinstance(cause, SyndicateError):
        code = cause.code
        message = str(cause)
    elif isinstance(cause, (ValueError, KeyError)):
        code = "invalid_request"
        message = str(cause) if isinstance(cause, ValueError) else "Unexpected response shape."
    else:
        code = "internal_error"
        message = f"Unexpected error while publishing to {platform_id}."

    snapshot: Dict[str, Any] = {
        "code": code,
        "message": message,
        "upstreamStatus": upstream_status,
        "upstreamBody": upstream_body,
        "correlationId": correlation_id,
    }
    if report is not None:
        snapshot["attempts"] = len(report.attempts)
        snapshot["refreshed"] = report.refreshed
    return snapshot


__all__ = ["AnalyticsSink", "DispatchEngine", "build_failure_snapshot"]
