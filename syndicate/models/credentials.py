"""
Domain models for platform credential persistence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

SECRET_FIELDS = ("access_secret", "refresh_secret", "page_secret")


@dataclass(frozen=True, slots=True)
class EncryptedSecret:
    """AES-GCM output for a single secret field, hex encoded."""

    ciphertext: str
    iv: str
    tag: str

    def to_dict(self) -> Dict[str, str]:
        return {"ciphertext": self.ciphertext, "iv": self.iv, "tag": self.tag}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EncryptedSecret":
        return cls(
            ciphertext=payload["ciphertext"],
            iv=payload["iv"],
            tag=payload["tag"],
        )


@dataclass(slots=True)
class PlatformCredential:
    """Decrypted credential for one (user, platform) connection."""

    access_secret: str = field(repr=False)
    refresh_secret: Optional[str] = field(default=None, repr=False)
    page_secret: Optional[str] = field(default=None, repr=False)
    external_account_id: Optional[str] = None
    page_id: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[int] = None
    connected_at: Optional[int] = None
    updated_at: Optional[int] = None

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now_ms

    def secret_values(self) -> list[str]:
        """Plaintext secrets held by this credential, for scrubbing diagnostics."""
        return [
            value
            for value in (self.access_secret, self.refresh_secret, self.page_secret)
            if value
        ]


class ConnectedPlatform(BaseModel):
    """Secret-free view of a stored connection."""

    platform_id: str
    connected_at: Optional[int] = Field(None, description="Epoch millis of the first connect.")
    updated_at: Optional[int] = None
    expires_at: Optional[int] = Field(
        None, description="Epoch millis when the access secret expires; null if never."
    )
    scope: Optional[str] = None
    external_account_id: Optional[str] = None


__all__ = ["ConnectedPlatform", "EncryptedSecret", "PlatformCredential", "SECRET_FIELDS"]
