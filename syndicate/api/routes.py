"""
FastAPI routes for connecting platforms and publishing posts.
"""

from __future__ import annotations

import json
import logging
import uuid
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from syndicate.core.errors import (
    ClaimConflict,
    ConfigurationError,
    DispatchFailed,
    InvalidState,
    NotConnected,
    NotFound,
    ProviderDenied,
    QuotaExceeded,
    SyndicateError,
    TokenExchangeError,
    UnsupportedPlatform,
)
from syndicate.dependencies import (
    get_app_settings,
    get_authorization_state_manager,
    get_billing_webhook_processor,
    get_credential_vault,
    get_post_intent_service,
)
from syndicate.models.intents import IntentStatus, PostIntent
from syndicate.schemas import (
    ConnectedPlatformsResponse,
    OAuthInitResponse,
    PostIntentResponse,
    PostRequest,
    ScheduleRequest,
    WebhookAck,
)
from syndicate.services.platform_registry import resolve_platform_id
from syndicate.utils.clock import to_ms

router = APIRouter()
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    NotFound: HTTPStatus.NOT_FOUND,
    NotConnected: HTTPStatus.CONFLICT,
    ClaimConflict: HTTPStatus.CONFLICT,
    UnsupportedPlatform: HTTPStatus.BAD_REQUEST,
    InvalidState: HTTPStatus.BAD_REQUEST,
    QuotaExceeded: HTTPStatus.PAYMENT_REQUIRED,
    ConfigurationError: HTTPStatus.SERVICE_UNAVAILABLE,
}


def _http_error(exc: SyndicateError) -> HTTPException:
    status = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        HTTPStatus.INTERNAL_SERVER_ERROR,
    )
    return HTTPException(status_code=status, detail={"code": exc.code, "message": str(exc)})


def _intent_response(intent: PostIntent) -> PostIntentResponse:
    return PostIntentResponse(**intent.to_public_dict())


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/platforms/connected", response_model=ConnectedPlatformsResponse)
async def list_connected_platforms(
    vault: Annotated[Any, Depends(get_credential_vault)],
    user_id: str = Query(..., description="User whose connections to list."),
) -> ConnectedPlatformsResponse:
    return ConnectedPlatformsResponse(user_id=user_id, platforms=vault.list_connected(user_id))


@router.get("/platforms/{platform}/oauth/init", status_code=HTTPStatus.OK)
async def start_oauth_flow(
    platform: str,
    request: Request,
    manager: Annotated[Any, Depends(get_authorization_state_manager)],
    user_id: str = Query(..., description="User identifier initiating the connection."),
    redirect_to: str | None = Query(
        default=None,
        description="Optional URL to redirect back to once the account is connected.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the provider consent screen.",
    ),
) -> Any:
    """
    Kick off the OAuth flow by issuing a handshake and authorization URL.
    """
    try:
        issued = manager.begin(user_id, platform, redirect_to=redirect_to)
    except SyndicateError as exc:
        raise _http_error(exc) from exc

    wants_html = "text/html" in request.headers.get("accept", "").lower()
    if redirect or wants_html:
        return RedirectResponse(
            url=issued.authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    return OAuthInitResponse(
        authorization_url=issued.authorization_url,
        correlation_id=issued.correlation_id,
        expires_at=issued.expires_at,
    )


@router.get("/platforms/{platform}/oauth/callback")
async def handle_oauth_callback(
    platform: str,
    manager: Annotated[Any, Depends(get_authorization_state_manager)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
) -> Response:
    """Complete the connection and send the browser back to the front-end."""
    correlation_id = uuid.uuid4().hex

    if error:
        try:
            manager.decline(state, platform, error, error_description)
        except ProviderDenied as exc:
            correlation_id = exc.correlation_id or correlation_id
            logger.info(
                "%s %s",
                exc,
                exc.description or "",
                extra={"correlation_id": correlation_id},
            )
            return _callback_response(
                settings,
                exc.redirect_to,
                error_code="PROVIDER_DENIED",
                correlation_id=correlation_id,
            )
    if not code or not state:
        return _callback_response(
            settings, None, error_code="MISSING_PARAMS", correlation_id=correlation_id
        )

    try:
        handshake = await manager.connect(state, code, expected_platform=platform)
    except (InvalidState, NotFound, UnsupportedPlatform) as exc:
        logger.warning("OAuth callback rejected: %s", exc, extra={"correlation_id": correlation_id})
        return _callback_response(
            settings, None, error_code="INVALID_STATE", correlation_id=correlation_id
        )
    except (TokenExchangeError, ConfigurationError, httpx.HTTPError) as exc:
        logger.error(
            "OAuth token exchange failed for %s: %s",
            platform,
            exc,
            extra={"correlation_id": correlation_id},
        )
        return _callback_response(
            settings, None, error_code="TOKEN_EXCHANGE_FAILED", correlation_id=correlation_id
        )

    return _callback_response(
        settings,
        handshake.redirect_to,
        connected=handshake.platform_id,
        correlation_id=handshake.correlation_id,
    )


def _callback_response(
    settings: Any,
    redirect_to: Optional[str],
    *,
    correlation_id: str,
    error_code: Optional[str] = None,
    connected: Optional[str] = None,
) -> Response:
    params = {"error_code": error_code} if error_code else {"connected": connected}
    params["cid"] = correlation_id

    target = redirect_to
    if not target and settings.frontend_base_url:
        target = f"{str(settings.frontend_base_url).rstrip('/')}/integrations"
    if target:
        separator = "&" if "?" in target else "?"
        return RedirectResponse(
            url=f"{target}{separator}{urlencode(params)}",
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )

    status = HTTPStatus.BAD_REQUEST if error_code else HTTPStatus.OK
    body = {"status": "error" if error_code else "connected", **params}
    return JSONResponse(content=body, status_code=status)


@router.delete("/platforms/{platform}", status_code=HTTPStatus.OK)
async def disconnect_platform(
    platform: str,
    vault: Annotated[Any, Depends(get_credential_vault)],
    user_id: str = Query(..., description="User disconnecting the account."),
) -> dict:
    try:
        platform_id = resolve_platform_id(platform).value
    except UnsupportedPlatform as exc:
        raise _http_error(exc) from exc
    if not vault.remove(user_id, platform_id):
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND, detail=f"{platform_id} is not connected."
        )
    return {"status": "disconnected", "platform": platform_id}


@router.post("/posts", response_model=PostIntentResponse, status_code=HTTPStatus.CREATED)
async def publish_post(
    payload: PostRequest,
    service: Annotated[Any, Depends(get_post_intent_service)],
) -> PostIntentResponse:
    """Publish immediately; a failed dispatch returns 502 with the failure snapshot."""
    try:
        intent = await service.publish_now(
            payload.user_id,
            payload.platform,
            payload.to_content(),
            options=payload.options,
        )
    except DispatchFailed as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=exc.snapshot) from exc
    except SyndicateError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    return _intent_response(intent)


@router.post(
    "/posts/schedule", response_model=PostIntentResponse, status_code=HTTPStatus.CREATED
)
async def schedule_post(
    payload: ScheduleRequest,
    service: Annotated[Any, Depends(get_post_intent_service)],
) -> PostIntentResponse:
    try:
        intent = service.create(
            payload.user_id,
            payload.platform,
            payload.to_content(),
            scheduled_at=to_ms(payload.scheduled_at),
            options=payload.options,
        )
    except SyndicateError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    return _intent_response(intent)


@router.get("/posts/scheduled", response_model=list[PostIntentResponse])
async def list_posts(
    service: Annotated[Any, Depends(get_post_intent_service)],
    user_id: str = Query(...),
    status: IntentStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[PostIntentResponse]:
    intents = service.list_for_user(user_id, status=status, limit=limit)
    return [_intent_response(intent) for intent in intents]


@router.get("/posts/{intent_id}", response_model=PostIntentResponse)
async def get_post(
    intent_id: str,
    service: Annotated[Any, Depends(get_post_intent_service)],
    user_id: str = Query(...),
) -> PostIntentResponse:
    try:
        return _intent_response(service.get(user_id, intent_id))
    except SyndicateError as exc:
        raise _http_error(exc) from exc


@router.delete("/posts/{intent_id}", response_model=PostIntentResponse)
async def cancel_post(
    intent_id: str,
    service: Annotated[Any, Depends(get_post_intent_service)],
    user_id: str = Query(...),
) -> PostIntentResponse:
    try:
        return _intent_response(service.cancel(user_id, intent_id))
    except InvalidState as exc:
        raise HTTPException(
            status_code=HTTPStatus.CONFLICT, detail={"code": exc.code, "message": str(exc)}
        ) from exc
    except SyndicateError as exc:
        raise _http_error(exc) from exc


@router.post("/webhooks/billing", response_model=WebhookAck)
async def billing_webhook(
    request: Request,
    processor: Annotated[Any, Depends(get_billing_webhook_processor)],
    signature: str | None = Header(default=None, alias="X-Signature"),
) -> WebhookAck:
    body = await request.body()
    try:
        processor.verify_signature(body, signature)
    except InvalidState as exc:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail=str(exc)) from exc
    try:
        event = json.loads(body)
        applied = processor.handle(event)
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Malformed event.") from exc
    return WebhookAck(received=True, duplicate=not applied)


__all__ = ["router"]
