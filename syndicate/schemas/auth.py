"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from syndicate.models.credentials import ConnectedPlatform


class OAuthInitResponse(BaseModel):
    """Returned when a client starts connecting a platform."""

    authorization_url: str = Field(..., description="Provider consent URL to send the user to.")
    correlation_id: str = Field(..., description="Identifier echoed back on the callback redirect.")
    expires_at: int = Field(..., description="Epoch millis after which the handshake is void.")


class ConnectedPlatformsResponse(BaseModel):
    user_id: str
    platforms: List[ConnectedPlatform] = Field(default_factory=list)


__all__ = ["ConnectedPlatformsResponse", "OAuthInitResponse"]
