"""
OAuth utilities shared by every connected platform.

These helpers sign the state parameter carried across the provider redirect,
generate PKCE material and talk to provider token endpoints.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from syndicate.core.config import OAuthSettings, ProviderSettings
from syndicate.core.errors import ConfigurationError, InvalidState, TokenExchangeError
from syndicate.utils.clock import now_ms

if TYPE_CHECKING:
    from syndicate.services.platform_registry import PlatformAdapter

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v18.0"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class OAuthStateSigner:
    """Encode and verify OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str, ttl_seconds: int = 900) -> None:
        if not secret_key:
            raise ConfigurationError("OAUTH_STATE_SECRET must be configured.")
        self._secret_key = secret_key.encode("utf-8")
        self._ttl_ms = ttl_seconds * 1000

    def _signature(self, handshake_id: str, timestamp: int) -> str:
        message = f"{handshake_id}:{timestamp}".encode("utf-8")
        return hmac.new(self._secret_key, message, hashlib.sha256).hexdigest()

    def sign(self, handshake_id: str, timestamp: Optional[int] = None) -> str:
        ts = now_ms() if timestamp is None else timestamp
        payload = {"id": handshake_id, "ts": ts, "sig": self._signature(handshake_id, ts)}
        return _b64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    def verify(self, token: str, current_ms: Optional[int] = None) -> str:
        """Return the handshake id carried by ``token``.

        Raises ``InvalidState`` when the token is malformed, forged or older
        than the configured TTL. No storage is touched here.
        """
        try:
            payload = json.loads(_b64url_decode(token))
            handshake_id = str(payload["id"])
            timestamp = int(payload["ts"])
            signature = str(payload["sig"])
        except (ValueError, KeyError, TypeError, binascii.Error) as exc:
            raise InvalidState("Malformed OAuth state.") from exc

        expected = self._signature(handshake_id, timestamp)
        if not hmac.compare_digest(signature, expected):
            raise InvalidState("Invalid OAuth state signature.")

        current = now_ms() if current_ms is None else current_ms
        if current - timestamp > self._ttl_ms or timestamp - current > self._ttl_ms:
            raise InvalidState("OAuth state has expired.")
        return handshake_id


@dataclass(frozen=True, slots=True)
class PkcePair:
    verifier: str
    challenge: str


def generate_pkce() -> PkcePair:
    """32 random bytes as the verifier, S256 challenge derived from it."""
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PkcePair(verifier=verifier, challenge=challenge)


@dataclass(slots=True)
class TokenGrant:
    """Normalized token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    scope: Optional[str] = None
    page_token: Optional[str] = None
    page_id: Optional[str] = None
    external_account_id: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenGrant(expires_at={self.expires_at!r}, scope={self.scope!r})"


def _parse_grant(payload: Dict[str, Any], *, issued_at: int) -> TokenGrant:
    # TikTok nests the token fields under "data".
    if "access_token" not in payload and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    access_token = payload.get("access_token")
    if not access_token:
        raise TokenExchangeError("Token endpoint response did not include an access token.")
    expires_in = payload.get("expires_in")
    scope = payload.get("scope")
    if isinstance(scope, list):
        scope = " ".join(scope)
    return TokenGrant(
        access_token=access_token,
        refresh_token=payload.get("refresh_token"),
        expires_at=issued_at + int(expires_in) * 1000 if expires_in else None,
        scope=scope,
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or response.status_code)
        return str(payload.get("error_description") or error or response.status_code)
    return f"HTTP {response.status_code}"


class PlatformOAuthClient:
    """Build authorization URLs and call provider token endpoints."""

    def __init__(
        self,
        providers: ProviderSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self._providers = providers
        self._oauth = oauth_settings
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _credentials(self, adapter: "PlatformAdapter") -> tuple[str, str]:
        client_id, client_secret = self._providers.client_pair(adapter.provider_family)
        if not client_id or not client_secret:
            raise ConfigurationError(
                f"OAuth client credentials are not configured for {adapter.platform_id.value}."
            )
        return client_id, client_secret

    def redirect_uri(self, adapter: "PlatformAdapter") -> str:
        return self._oauth.redirect_uri(adapter.callback_path)

    def build_authorization_url(
        self,
        adapter: "PlatformAdapter",
        state: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        """Construct the provider consent URL."""
        client_id, _ = self._credentials(adapter)
        params = {
            adapter.client_id_param: client_id,
            "redirect_uri": self.redirect_uri(adapter),
            "response_type": "code",
            "scope": adapter.scope_separator.join(adapter.scopes),
            "state": state,
        }
        if adapter.requires_pkce and code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        params.update(adapter.extra_authorize_params)
        return f"{adapter.authorization_url}?{urlencode(params)}"

    async def exchange_code(
        self,
        adapter: "PlatformAdapter",
        code: str,
        code_verifier: Optional[str] = None,
    ) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri(adapter),
        }
        if adapter.requires_pkce and code_verifier:
            payload["code_verifier"] = code_verifier
        grant = await self._token_request(adapter, payload)
        logger.info(
            "OAuth token exchange succeeded",
            extra={"platform_id": adapter.platform_id.value},
        )
        return grant

    async def refresh_grant(self, adapter: "PlatformAdapter", refresh_token: str) -> TokenGrant:
        """Run a ``refresh_token`` grant against the adapter's token endpoint."""
        return await self._token_request(
            adapter, {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def exchange_long_lived(self, adapter: "PlatformAdapter", token: str) -> TokenGrant:
        """Re-exchange a current token for a fresh long-lived one (Meta family)."""
        client_id, client_secret = self._credentials(adapter)
        params = {
            "grant_type": "fb_exchange_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "fb_exchange_token": token,
        }
        issued_at = now_ms()
        async with self._client() as client:
            response = await client.get(adapter.token_url, params=params)
        if response.status_code != 200:
            raise TokenExchangeError(
                f"Long-lived token exchange failed: {_error_detail(response)}",
                status_code=response.status_code,
            )
        return _parse_grant(response.json(), issued_at=issued_at)

    async def _managed_pages(self, client: httpx.AsyncClient, user_token: str) -> list:
        response = await client.get(
            f"{GRAPH_API_BASE}/me/accounts",
            params={"access_token": user_token},
        )
        if response.status_code != 200:
            raise TokenExchangeError(
                f"Could not list managed pages: {_error_detail(response)}",
                status_code=response.status_code,
            )
        return response.json().get("data") or []

    async def fetch_page_token(self, user_token: str, page_id: Optional[str]) -> Optional[str]:
        """Page token that ``user_token`` currently grants for ``page_id`` (first page if unset)."""
        async with self._client() as client:
            pages = await self._managed_pages(client, user_token)
        for page in pages:
            if page_id is None or page.get("id") == page_id:
                return page.get("access_token")
        return None

    async def resolve_meta_page(
        self, grant: TokenGrant, *, instagram: bool = False
    ) -> TokenGrant:
        """Attach the first managed page (and its Instagram business account) to ``grant``."""
        async with self._client() as client:
            pages = await self._managed_pages(client, grant.access_token)
            if not pages:
                logger.warning("Meta account has no managed pages")
                return grant
            page = pages[0]
            grant.page_id = page.get("id")
            grant.page_token = page.get("access_token")
            grant.external_account_id = grant.page_id

            if instagram and grant.page_id and grant.page_token:
                ig_response = await client.get(
                    f"{GRAPH_API_BASE}/{grant.page_id}",
                    params={
                        "fields": "instagram_business_account",
                        "access_token": grant.page_token,
                    },
                )
                if ig_response.status_code != 200:
                    raise TokenExchangeError(
                        f"Could not resolve Instagram account: {_error_detail(ig_response)}",
                        status_code=ig_response.status_code,
                    )
                account = ig_response.json().get("instagram_business_account") or {}
                grant.external_account_id = account.get("id")
        return grant

    async def _token_request(
        self, adapter: "PlatformAdapter", payload: Dict[str, str]
    ) -> TokenGrant:
        from syndicate.services.platform_registry import TokenRequestStyle

        client_id, client_secret = self._credentials(adapter)
        body = dict(payload)
        auth: Optional[httpx.BasicAuth] = None
        if adapter.token_request_style is TokenRequestStyle.FORM_BASIC:
            auth = httpx.BasicAuth(client_id, client_secret)
        else:
            body[adapter.client_id_param] = client_id
            body["client_secret"] = client_secret

        issued_at = now_ms()
        async with self._client() as client:
            if adapter.token_request_style is TokenRequestStyle.JSON:
                response = await client.post(
                    adapter.token_url, json=body, headers={"Accept": "application/json"}
                )
            else:
                response = await client.post(adapter.token_url, data=body, auth=auth)

        if response.status_code != 200:
            raise TokenExchangeError(
                f"Token endpoint rejected the request: {_error_detail(response)}",
                status_code=response.status_code,
            )
        try:
            token_payload = response.json()
        except ValueError as exc:
            raise TokenExchangeError("Token endpoint returned a non-JSON body.") from exc
        return _parse_grant(token_payload, issued_at=issued_at)


__all__ = [
    "GRAPH_API_BASE",
    "OAuthStateSigner",
    "PkcePair",
    "PlatformOAuthClient",
    "TokenGrant",
    "generate_pkce",
]
