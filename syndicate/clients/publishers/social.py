"""
Publish functions for short-form social platforms.
"""

from __future__ import annotations

from syndicate.core.errors import UpstreamHTTPError
from syndicate.models.intents import PublishResult

from .base import PlatformHTTP, PublishRequest, bearer

X_TEXT_LIMIT = 280
DISCORD_TEXT_LIMIT = 2000
REDDIT_TITLE_LIMIT = 300
TIKTOK_TITLE_LIMIT = 150
USER_AGENT = "syndicate/0.1"


async def publish_x(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    payload = await http.post(
        "https://api.twitter.com/2/tweets",
        json={"text": request.content.text[:X_TEXT_LIMIT]},
        headers=bearer(request.credential.access_secret),
    )
    tweet_id = payload["data"]["id"]
    return PublishResult(
        remote_id=tweet_id,
        canonical_url=f"https://twitter.com/i/web/status/{tweet_id}",
    )


async def publish_linkedin(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    token = request.credential.access_secret
    person_id = request.credential.external_account_id
    if not person_id:
        profile = await http.get("https://api.linkedin.com/v2/me", headers=bearer(token))
        person_id = profile["id"]

    body = {
        "author": f"urn:li:person:{person_id}",
        "lifecycleState": "PUBLISHED",
        "specificContent": {
            "com.linkedin.ugc.ShareContent": {
                "shareCommentary": {"text": request.content.text},
                "shareMediaCategory": "ARTICLE" if request.content.media else "NONE",
                "media": [
                    {"status": "READY", "originalUrl": media.url}
                    for media in request.content.media
                ],
            }
        },
        "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
    }
    response = await http.send(
        "POST",
        "https://api.linkedin.com/v2/ugcPosts",
        json=body,
        headers={**bearer(token), "X-Restli-Protocol-Version": "2.0.0"},
    )
    post_id = response.headers.get("x-restli-id") or response.json().get("id")
    return PublishResult(
        remote_id=post_id,
        canonical_url=f"https://www.linkedin.com/feed/update/{post_id}",
    )


async def publish_tiktok(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    if not request.content.media:
        raise ValueError("TikTok posts require a video.")
    payload = await http.post(
        "https://open.tiktokapis.com/v2/post/publish/video/init/",
        json={
            "post_info": {
                "title": request.content.text[:TIKTOK_TITLE_LIMIT],
                "privacy_level": request.option(
                    "privacy_level", "privacyLevel", default="PUBLIC_TO_EVERYONE"
                ),
                "disable_duet": False,
                "disable_comment": False,
                "disable_stitch": False,
            },
            "source_info": {
                "source": "PULL_FROM_URL",
                "video_url": request.content.media[0].url,
            },
        },
        headers=bearer(request.credential.access_secret),
    )
    return PublishResult(remote_id=payload["data"]["publish_id"], canonical_url=None)


async def publish_reddit(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    subreddit = request.option("subreddit")
    if not subreddit:
        raise ValueError("Reddit posts require a subreddit option.")
    text = request.content.text
    form = {
        "sr": subreddit,
        "title": request.option("title", default=text)[:REDDIT_TITLE_LIMIT],
        "api_type": "json",
    }
    if request.content.media:
        form.update(kind="link", url=request.content.media[0].url)
    else:
        form.update(kind="self", text=text)

    payload = await http.post(
        "https://oauth.reddit.com/api/submit",
        data=form,
        headers={**bearer(request.credential.access_secret), "User-Agent": USER_AGENT},
    )
    result = payload.get("json", {})
    if result.get("errors"):
        # Reddit reports validation failures with HTTP 200.
        raise UpstreamHTTPError(422, result["errors"], platform_id="reddit")
    data = result["data"]
    return PublishResult(remote_id=data.get("name") or data["id"], canonical_url=data.get("url"))


async def publish_discord(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    channel_id = request.option("channel_id", "channelId")
    if not channel_id:
        raise ValueError("Discord posts require a channel_id option.")
    body = {"content": request.content.text[:DISCORD_TEXT_LIMIT]}
    if request.content.media:
        body["embeds"] = [{"image": {"url": media.url}} for media in request.content.media]

    payload = await http.post(
        f"https://discord.com/api/v10/channels/{channel_id}/messages",
        json=body,
        headers={"Authorization": f"Bot {request.credential.access_secret}"},
    )
    guild_id = request.option("guild_id", "guildId", default="@me")
    message_id = payload["id"]
    return PublishResult(
        remote_id=message_id,
        canonical_url=f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}",
    )


async def publish_youtube(http: PlatformHTTP, request: PublishRequest) -> PublishResult:
    """Resumable upload: open a session, pull the source video, then send its bytes."""
    if not request.content.media:
        raise ValueError("YouTube posts require a video.")
    video = request.content.media[0]
    token = request.credential.access_secret
    text = request.content.text

    session = await http.send(
        "POST",
        "https://www.googleapis.com/upload/youtube/v3/videos",
        params={"uploadType": "resumable", "part": "snippet,status"},
        json={
            "snippet": {
                "title": request.option("title", default=text)[:100],
                "description": text[:5000],
            },
            "status": {
                "privacyStatus": request.option(
                    "privacy_status", "privacyStatus", default="public"
                )
            },
        },
        headers={
            **bearer(token),
            "X-Upload-Content-Type": video.mime_type or "video/*",
        },
    )
    upload_url = session.headers["Location"]

    source = await http.send("GET", video.url)
    uploaded = await http.send(
        "PUT",
        upload_url,
        content=source.content,
        headers={**bearer(token), "Content-Type": video.mime_type or "video/*"},
    )
    video_id = uploaded.json()["id"]
    return PublishResult(
        remote_id=video_id,
        canonical_url=f"https://www.youtube.com/watch?v={video_id}",
    )


__all__ = [
    "publish_discord",
    "publish_linkedin",
    "publish_reddit",
    "publish_tiktok",
    "publish_x",
    "publish_youtube",
]
