"""
Domain models for post intents and their dispatch outcomes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class IntentStatus(str, Enum):
    SCHEDULED = "scheduled"
    DISPATCHING = "dispatching"
    PUBLISHED = "published"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (IntentStatus.PUBLISHED, IntentStatus.FAILED, IntentStatus.CANCELLED)


@dataclass(frozen=True, slots=True)
class MediaRef:
    url: str
    mime_type: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True, slots=True)
class PostContent:
    """Opaque content produced upstream: text plus ordered media references."""

    text: str
    media: tuple[MediaRef, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "media": [asdict(m) for m in self.media]}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PostContent":
        return cls(
            text=payload.get("text", ""),
            media=tuple(MediaRef(**m) for m in payload.get("media") or []),
        )


@dataclass(frozen=True, slots=True)
class PublishResult:
    remote_id: str
    canonical_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"remote_id": self.remote_id, "canonical_url": self.canonical_url}


@dataclass(slots=True)
class PostIntent:
    """One requested publish action, immediate or scheduled."""

    intent_id: str
    user_id: str
    platform_id: str
    content: PostContent
    scheduled_at: int
    created_at: int
    options: Dict[str, Any] = field(default_factory=dict)
    status: IntentStatus = IntentStatus.SCHEDULED
    result: Optional[PublishResult] = None
    last_error: Optional[Dict[str, Any]] = None
    claim_token: Optional[str] = None
    claimed_at: Optional[int] = None
    attempts: int = 0
    updated_at: Optional[int] = None
    published_at: Optional[int] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view without claim bookkeeping."""
        return {
            "intent_id": self.intent_id,
            "user_id": self.user_id,
            "platform_id": self.platform_id,
            "content": self.content.to_dict(),
            "options": dict(self.options),
            "scheduled_at": self.scheduled_at,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "published_at": self.published_at,
        }


__all__ = ["IntentStatus", "MediaRef", "PostContent", "PostIntent", "PublishResult"]
