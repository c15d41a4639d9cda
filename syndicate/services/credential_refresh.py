"""
Refresh stored credentials according to each platform's refresh strategy.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict

import httpx

from syndicate.clients.oauth import PlatformOAuthClient, TokenGrant
from syndicate.core.errors import TokenExchangeError
from syndicate.models.credentials import PlatformCredential
from syndicate.services.credential_vault import CredentialVault
from syndicate.services.platform_registry import PlatformAdapter, RefreshStrategy

logger = logging.getLogger(__name__)


class CredentialRefresher:
    """Obtain a fresh access secret and persist it through the vault.

    A failed primary refresh raises before anything is written, so the stored
    credential stays unchanged.
    """

    def __init__(self, vault: CredentialVault, oauth_client: PlatformOAuthClient) -> None:
        self._vault = vault
        self._oauth = oauth_client

    async def refresh(
        self,
        user_id: str,
        adapter: PlatformAdapter,
        credential: PlatformCredential,
    ) -> PlatformCredential:
        strategy = adapter.refresh_strategy
        platform_id = adapter.platform_id.value

        if strategy is RefreshStrategy.NONE:
            raise TokenExchangeError(f"{platform_id} credentials cannot be refreshed.")

        if strategy in (
            RefreshStrategy.ROTATING_REFRESH_TOKEN,
            RefreshStrategy.STATIC_REFRESH_TOKEN,
        ):
            if not credential.refresh_secret:
                raise TokenExchangeError(f"No refresh secret stored for {platform_id}.")
            grant = await self._oauth.refresh_grant(adapter, credential.refresh_secret)
            fields = self._primary_fields(grant, credential)
            if strategy is RefreshStrategy.ROTATING_REFRESH_TOKEN and grant.refresh_token:
                fields["refresh_secret"] = grant.refresh_token
        else:
            grant = await self._oauth.exchange_long_lived(adapter, credential.access_secret)
            fields = self._primary_fields(grant, credential)
            if strategy is RefreshStrategy.PAGE_TOKEN_CHAIN and credential.page_secret:
                page_secret = await self._refresh_page_secret(
                    adapter, credential, grant.access_token
                )
                if page_secret:
                    fields["page_secret"] = page_secret

        self._vault.update(user_id, platform_id, fields)
        logger.info(
            "Refreshed credential using %s",
            strategy.value,
            extra={"user_id": user_id, "platform_id": platform_id},
        )
        return replace(credential, **fields)

    async def _refresh_page_secret(
        self, adapter: PlatformAdapter, credential: PlatformCredential, user_token: str
    ) -> str | None:
        """Re-derive the page token from the renewed user token.

        Failure keeps the existing page token.
        """
        try:
            page_secret = await self._oauth.fetch_page_token(user_token, credential.page_id)
        except (TokenExchangeError, httpx.HTTPError) as exc:
            logger.warning(
                "Page token refresh failed, keeping the existing page token: %s",
                exc,
                extra={"platform_id": adapter.platform_id.value},
            )
            return None
        if not page_secret:
            logger.warning(
                "Renewed user token no longer grants the page, keeping the existing page token",
                extra={"platform_id": adapter.platform_id.value},
            )
        return page_secret

    @staticmethod
    def _primary_fields(grant: TokenGrant, credential: PlatformCredential) -> Dict[str, Any]:
        return {
            "access_secret": grant.access_token,
            "expires_at": grant.expires_at,
            "scope": grant.scope or credential.scope,
        }


__all__ = ["CredentialRefresher"]
