"""Request and response models for posting and scheduling."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from syndicate.models.intents import MediaRef, PostContent


class MediaPayload(BaseModel):
    url: str = Field(..., description="Publicly reachable media URL.")
    mime_type: Optional[str] = None
    size: Optional[int] = None


class PostRequest(BaseModel):
    """Publish immediately."""

    user_id: str = Field(..., description="Owner of the connected account.")
    platform: str = Field(..., description="Platform identifier, e.g. 'x' or 'linkedin'.")
    text: str = Field("", description="Post body produced by the content service.")
    media: List[MediaPayload] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)

    def to_content(self) -> PostContent:
        return PostContent(
            text=self.text,
            media=tuple(MediaRef(url=m.url, mime_type=m.mime_type, size=m.size) for m in self.media),
        )


class ScheduleRequest(PostRequest):
    """Publish at a future time."""

    scheduled_at: datetime = Field(..., description="When to publish (ISO-8601).")

    @field_validator("scheduled_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("scheduled_at must include a timezone offset")
        return value


class PostIntentResponse(BaseModel):
    intent_id: str
    user_id: str
    platform_id: str
    status: str
    scheduled_at: int
    created_at: int
    updated_at: Optional[int] = None
    published_at: Optional[int] = None
    content: Dict[str, Any]
    options: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    last_error: Optional[Dict[str, Any]] = None


__all__ = ["MediaPayload", "PostIntentResponse", "PostRequest", "ScheduleRequest"]
