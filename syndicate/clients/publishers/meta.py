"""
Publish functions for the Meta family (Facebook Pages, Instagram, Threads).
"""

from __future__ import annotations

import logging
from typing import Optional

from syndicate.clients.oauth import GRAPH_API_BASE
from syndicate.core.errors import NotConnected, UpstreamHTTPError
from syndicate.models.intents import PublishResult

from .base import PlatformHTTP, PublishRequest

logger = logging.getLogger(__name__)

THREADS_API_BASE = "https://graph.threads.net/v1.0"
GRAPH_TOKEN_EXPIRED_CODE = 190


def graph_token_expired(exc: BaseException) -> bool:
    """Graph reports invalid or expired tokens as 401 or error code 190."""
    if not isinstance(exc, UpstreamHTTPError):
        return False
    if exc.status_code == 401:
        return True
    body = exc.body if isinstance(exc.body, dict) else {}
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    return error.get("code") == GRAPH_TOKEN_EXPIRED_CODE


async def fetch_permalink(
    http: PlatformHTTP, object_id: str, access_token: str, *, field_name: str
) -> Optional[str]:
    """Best-effort permalink lookup; the post already exists when this runs."""
    try:
        payload = await http.get(
            f"{GRAPH_API_BASE}/{object_id}",
            params={"fields": field_name, "access_token": access_token},
        )
    except UpstreamHTTPError as exc:
        logger.warning("Permalink lookup failed with HTTP %s", exc.status_code)
        return None
    return payload.get(field_name)


async def publish_facebook(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    credential = request.credential
    page_id = request.option("page_id", "pageId") or credential.page_id or "me"
    token = credential.access_secret
    if page_id != "me" and credential.page_secret:
        token = credential.page_secret

    data = {"message": request.content.text, "access_token": token}
    if request.content.media:
        data["link"] = request.content.media[0].url
    payload = await http.post(f"{GRAPH_API_BASE}/{page_id}/feed", data=data)
    post_id = payload["id"]

    permalink = await fetch_permalink(http, post_id, token, field_name="permalink_url")
    return PublishResult(
        remote_id=post_id,
        canonical_url=permalink or f"https://www.facebook.com/{post_id}",
    )


async def publish_instagram(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    credential = request.credential
    ig_user_id = credential.external_account_id
    if not ig_user_id or not credential.page_secret:
        raise NotConnected(
            "Instagram business account is not linked; reconnect Instagram."
        )
    if not request.content.media:
        raise ValueError("Instagram posts require at least one image.")

    token = credential.page_secret
    container = await http.post(
        f"{GRAPH_API_BASE}/{ig_user_id}/media",
        data={
            "image_url": request.content.media[0].url,
            "caption": request.content.text,
            "access_token": token,
        },
    )
    published = await http.post(
        f"{GRAPH_API_BASE}/{ig_user_id}/media_publish",
        data={"creation_id": container["id"], "access_token": token},
    )
    media_id = published["id"]

    permalink = await fetch_permalink(http, media_id, token, field_name="permalink")
    return PublishResult(
        remote_id=media_id,
        canonical_url=permalink or f"https://www.instagram.com/p/{media_id}",
    )


async def publish_threads(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    credential = request.credential
    user_id = credential.external_account_id or "me"
    token = credential.access_secret

    data = {"text": request.content.text, "access_token": token, "media_type": "TEXT"}
    if request.content.media:
        data["media_type"] = "IMAGE"
        data["image_url"] = request.content.media[0].url
    container = await http.post(f"{THREADS_API_BASE}/{user_id}/threads", data=data)
    published = await http.post(
        f"{THREADS_API_BASE}/{user_id}/threads_publish",
        data={"creation_id": container["id"], "access_token": token},
    )
    thread_id = published["id"]

    permalink: Optional[str] = None
    try:
        details = await http.get(
            f"{THREADS_API_BASE}/{thread_id}",
            params={"fields": "permalink", "access_token": token},
        )
        permalink = details.get("permalink")
    except UpstreamHTTPError as exc:
        logger.warning("Threads permalink lookup failed with HTTP %s", exc.status_code)
    return PublishResult(remote_id=thread_id, canonical_url=permalink)


__all__ = [
    "fetch_permalink",
    "graph_token_expired",
    "publish_facebook",
    "publish_instagram",
    "publish_threads",
]
