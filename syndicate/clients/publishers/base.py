"""Shared plumbing for platform publish functions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from syndicate.core.errors import UpstreamHTTPError
from syndicate.models.credentials import PlatformCredential
from syndicate.models.intents import PostContent, PublishResult
from syndicate.utils.http import read_error_body


@dataclass(frozen=True, slots=True)
class PublishRequest:
    """Everything a publish function needs for one attempt."""

    content: PostContent
    credential: PlatformCredential
    options: Mapping[str, Any] = field(default_factory=dict)

    def option(self, *names: str, default: Any = None) -> Any:
        """First option present under any of ``names`` (camelCase or snake_case)."""
        for name in names:
            value = self.options.get(name)
            if value not in (None, ""):
                return value
        return default


class PlatformHTTP:
    """Thin ``httpx`` wrapper raising ``UpstreamHTTPError`` for non-success responses.

    Writes (POST/PUT) carry the idempotency key under the platform's header
    when the platform supports one.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        platform_id: str,
        idempotency_header: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> None:
        self._client = client
        self._platform_id = platform_id
        self._idempotency_header = idempotency_header
        self._idempotency_key = idempotency_key

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        merged = dict(headers or {})
        if (
            method.upper() in {"POST", "PUT", "PATCH"}
            and self._idempotency_header
            and self._idempotency_key
        ):
            merged[self._idempotency_header] = self._idempotency_key
        response = await self._client.request(method, url, headers=merged, **kwargs)
        if response.status_code >= 400:
            raise UpstreamHTTPError(
                response.status_code,
                read_error_body(response),
                platform_id=self._platform_id,
            )
        return response

    async def get(self, url: str, **kwargs: Any) -> Any:
        return _json_or_empty(await self.send("GET", url, **kwargs))

    async def post(self, url: str, **kwargs: Any) -> Any:
        return _json_or_empty(await self.send("POST", url, **kwargs))


def _json_or_empty(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


PublishFunction = Callable[[PlatformHTTP, PublishRequest], Awaitable[PublishResult]]


__all__ = ["PlatformHTTP", "PublishFunction", "PublishRequest", "bearer"]
