"""Schemas for the billing webhook."""

from __future__ import annotations

from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False


__all__ = ["WebhookAck"]
