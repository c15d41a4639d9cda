"""Per-platform publish functions mapping post content to native API calls."""

from .base import PlatformHTTP, PublishFunction, PublishRequest
from .longform import publish_medium, publish_patreon
from .meta import graph_token_expired, publish_facebook, publish_instagram, publish_threads
from .social import (
    publish_discord,
    publish_linkedin,
    publish_reddit,
    publish_tiktok,
    publish_x,
    publish_youtube,
)

__all__ = [
    "PlatformHTTP",
    "PublishFunction",
    "PublishRequest",
    "graph_token_expired",
    "publish_discord",
    "publish_facebook",
    "publish_instagram",
    "publish_linkedin",
    "publish_medium",
    "publish_patreon",
    "publish_reddit",
    "publish_threads",
    "publish_tiktok",
    "publish_x",
    "publish_youtube",
]
