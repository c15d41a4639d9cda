"""
Publish functions for blog and membership platforms.
"""

from __future__ import annotations

import html

from syndicate.models.intents import PublishResult

from .base import PlatformHTTP, PublishRequest, bearer

MEDIUM_API_BASE = "https://api.medium.com/v1"
PATREON_API_BASE = "https://www.patreon.com/api/oauth2/v2"


def _as_html(text: str) -> str:
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    return "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)


async def publish_medium(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    token = request.credential.access_secret
    author_id = request.credential.external_account_id
    if not author_id:
        profile = await http.get(f"{MEDIUM_API_BASE}/me", headers=bearer(token))
        author_id = profile["data"]["id"]

    text = request.content.text
    payload = await http.post(
        f"{MEDIUM_API_BASE}/users/{author_id}/posts",
        json={
            "title": request.option("title", default=text[:100]),
            "contentFormat": "html",
            "content": _as_html(text),
            "tags": list(request.option("tags", default=[])),
            "publishStatus": request.option("publish_status", "publishStatus", default="draft"),
        },
        headers={**bearer(token), "Accept": "application/json"},
    )
    data = payload["data"]
    return PublishResult(remote_id=data["id"], canonical_url=data.get("url"))


async def publish_patreon(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    token = request.credential.access_secret
    campaign_id = request.option("campaign_id", "campaignId")
    if not campaign_id:
        campaigns = await http.get(f"{PATREON_API_BASE}/campaigns", headers=bearer(token))
        entries = campaigns.get("data") or []
        if not entries:
            raise ValueError("No Patreon campaign found for this account.")
        campaign_id = entries[0]["id"]

    payload = await http.post(
        f"{PATREON_API_BASE}/posts",
        json={
            "data": {
                "type": "post",
                "attributes": {
                    "title": request.option("title", default=request.content.text[:100]),
                    "content": _as_html(request.content.text),
                    "is_paid": bool(request.option("is_paid", "isPaid", default=False)),
                    "tier_ids": list(request.option("tier_ids", "tierIds", default=[])),
                },
                "relationships": {
                    "campaign": {"data": {"type": "campaign", "id": campaign_id}}
                },
            }
        },
        headers=bearer(token),
    )
    post_id = payload["data"]["id"]
    return PublishResult(
        remote_id=post_id,
        canonical_url=f"https://www.patreon.com/posts/{post_id}",
    )


__all__ = ["publish_medium", "publish_patreon"]
