"""Public schema exports."""

from .auth import ConnectedPlatformsResponse, OAuthInitResponse
from .billing import WebhookAck
from .posts import MediaPayload, PostIntentResponse, PostRequest, ScheduleRequest

__all__ = [
    "ConnectedPlatformsResponse",
    "MediaPayload",
    "OAuthInitResponse",
    "PostIntentResponse",
    "PostRequest",
    "ScheduleRequest",
    "WebhookAck",
]
