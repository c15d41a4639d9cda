"""
Authorization state manager for connecting platform accounts.

A handshake is issued by :meth:`AuthorizationStateManager.begin`, travels to
the provider only as a signed state parameter, and is consumed exactly once by
:meth:`AuthorizationStateManager.complete`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, NoReturn, Optional
from uuid import uuid4

from syndicate.clients.oauth import OAuthStateSigner, PlatformOAuthClient, generate_pkce
from syndicate.clients.sqlite_store import SQLiteStore
from syndicate.core.errors import InvalidState, NotFound, ProviderDenied
from syndicate.models.credentials import PlatformCredential
from syndicate.services.credential_vault import CredentialVault
from syndicate.services.platform_registry import PlatformId, get_adapter
from syndicate.utils.clock import now_ms

logger = logging.getLogger(__name__)

_HANDSHAKE_PARTITION = "handshake"
_SORT_KEY_PREFIX = "handshake#"


@dataclass(frozen=True, slots=True)
class AuthorizationHandshake:
    handshake_id: str
    user_id: str
    platform_id: str
    correlation_id: str
    created_at: int
    pkce_verifier: Optional[str] = None
    redirect_to: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "pk": _HANDSHAKE_PARTITION,
            "sk": f"{_SORT_KEY_PREFIX}{self.handshake_id}",
            "handshake_id": self.handshake_id,
            "user_id": self.user_id,
            "platform_id": self.platform_id,
            "correlation_id": self.correlation_id,
            "created_at": self.created_at,
            "pkce_verifier": self.pkce_verifier,
            "redirect_to": self.redirect_to,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "AuthorizationHandshake":
        return cls(
            handshake_id=record["handshake_id"],
            user_id=record["user_id"],
            platform_id=record["platform_id"],
            correlation_id=record["correlation_id"],
            created_at=record["created_at"],
            pkce_verifier=record.get("pkce_verifier"),
            redirect_to=record.get("redirect_to"),
        )


@dataclass(frozen=True, slots=True)
class AuthorizationRequest:
    authorization_url: str
    handshake_id: str
    correlation_id: str
    expires_at: int


class AuthorizationStateManager:
    """Issue, verify and consume OAuth handshakes."""

    def __init__(
        self,
        store: SQLiteStore,
        signer: OAuthStateSigner,
        oauth_client: PlatformOAuthClient,
        vault: CredentialVault,
        *,
        ttl_seconds: int = 900,
    ) -> None:
        self._store = store
        self._signer = signer
        self._oauth = oauth_client
        self._vault = vault
        self._ttl_ms = ttl_seconds * 1000

    def begin(
        self,
        user_id: str,
        platform_id: str,
        *,
        redirect_to: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> AuthorizationRequest:
        adapter = get_adapter(platform_id)
        self.prune_expired()

        created_at = now_ms()
        pkce = generate_pkce() if adapter.requires_pkce else None
        handshake = AuthorizationHandshake(
            handshake_id=uuid4().hex,
            user_id=user_id,
            platform_id=adapter.platform_id.value,
            correlation_id=correlation_id or uuid4().hex,
            created_at=created_at,
            pkce_verifier=pkce.verifier if pkce else None,
            redirect_to=redirect_to,
        )
        state = self._signer.sign(handshake.handshake_id, created_at)
        url = self._oauth.build_authorization_url(
            adapter, state, code_challenge=pkce.challenge if pkce else None
        )
        self._store.put_item(handshake.to_record())
        logger.info(
            "Issued OAuth handshake",
            extra={
                "platform_id": handshake.platform_id,
                "correlation_id": handshake.correlation_id,
            },
        )
        return AuthorizationRequest(
            authorization_url=url,
            handshake_id=handshake.handshake_id,
            correlation_id=handshake.correlation_id,
            expires_at=created_at + self._ttl_ms,
        )

    def complete(self, signed_state: str) -> AuthorizationHandshake:
        """Verify the state, then consume the handshake it names.

        Signature and TTL are checked before any storage lookup. The fetch and
        delete happen in one transaction, so a second call raises ``NotFound``.
        """
        handshake_id = self._signer.verify(signed_state)
        record = self._store.pop_item(
            partition_key=_HANDSHAKE_PARTITION,
            sort_key=f"{_SORT_KEY_PREFIX}{handshake_id}",
        )
        if not record:
            raise NotFound("OAuth handshake was already used or never issued.")
        handshake = AuthorizationHandshake.from_record(record)
        if now_ms() - handshake.created_at > self._ttl_ms:
            raise InvalidState("OAuth handshake has expired.")
        return handshake

    async def connect(
        self,
        signed_state: str,
        code: str,
        *,
        expected_platform: Optional[str] = None,
    ) -> AuthorizationHandshake:
        """Consume the handshake, exchange the code and store the credential."""
        handshake = self.complete(signed_state)
        adapter = get_adapter(handshake.platform_id)
        if expected_platform and get_adapter(expected_platform) is not adapter:
            raise InvalidState("OAuth state was issued for a different platform.")
        grant = await self._oauth.exchange_code(adapter, code, handshake.pkce_verifier)
        if adapter.manages_pages:
            grant = await self._oauth.resolve_meta_page(
                grant, instagram=adapter.platform_id is PlatformId.INSTAGRAM
            )

        self._vault.store(
            handshake.user_id,
            handshake.platform_id,
            PlatformCredential(
                access_secret=grant.access_token,
                refresh_secret=grant.refresh_token,
                page_secret=grant.page_token,
                external_account_id=grant.external_account_id,
                page_id=grant.page_id,
                scope=grant.scope or adapter.scope_separator.join(adapter.scopes),
                expires_at=grant.expires_at,
            ),
        )
        logger.info(
            "Connected platform account",
            extra={
                "platform_id": handshake.platform_id,
                "correlation_id": handshake.correlation_id,
            },
        )
        return handshake

    def decline(
        self,
        signed_state: Optional[str],
        platform_id: str,
        reason: str,
        description: Optional[str] = None,
    ) -> NoReturn:
        """Consume the handshake of a refused consent and raise ``ProviderDenied``.

        An unusable state still yields ``ProviderDenied``; it only loses the
        handshake's redirect target.
        """
        handshake = None
        if signed_state:
            try:
                handshake = self.complete(signed_state)
            except (InvalidState, NotFound) as exc:
                logger.info("Denied callback carried an unusable state: %s", exc.code)
        raise ProviderDenied(
            handshake.platform_id if handshake else platform_id,
            reason,
            description,
            redirect_to=handshake.redirect_to if handshake else None,
            correlation_id=handshake.correlation_id if handshake else None,
        )

    def prune_expired(self) -> int:
        """Delete handshakes older than the TTL; returns how many were removed."""
        cutoff = now_ms() - self._ttl_ms
        removed = 0
        records = self._store.list_items_with_prefix(
            partition_key=_HANDSHAKE_PARTITION, sort_key_prefix=_SORT_KEY_PREFIX
        )
        for record in records:
            if record.get("created_at", 0) < cutoff:
                if self._store.delete_item(partition_key=record["pk"], sort_key=record["sk"]):
                    removed += 1
        if removed:
            logger.debug("Pruned %s expired OAuth handshakes", removed)
        return removed


__all__ = ["AuthorizationHandshake", "AuthorizationRequest", "AuthorizationStateManager"]
