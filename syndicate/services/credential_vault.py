"""
Encrypted-at-rest storage for per-user, per-platform credentials.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from syndicate.clients.sqlite_store import SQLiteStore
from syndicate.core.errors import IntegrityError, NotFound
from syndicate.models.credentials import (
    SECRET_FIELDS,
    ConnectedPlatform,
    EncryptedSecret,
    PlatformCredential,
)
from syndicate.services.token_cipher import TokenCipherService
from syndicate.utils.clock import now_ms

logger = logging.getLogger(__name__)

_PLAIN_FIELDS = ("external_account_id", "page_id", "scope", "expires_at")
_SORT_KEY_PREFIX = "credential#"


def _keys(user_id: str, platform_id: str) -> Dict[str, str]:
    return {
        "partition_key": f"user#{user_id}",
        "sort_key": f"{_SORT_KEY_PREFIX}{platform_id}",
    }


class CredentialVault:
    """Owns every credential record; plaintext secrets never leave this class
    except as the return value of :meth:`retrieve`."""

    def __init__(self, store: SQLiteStore, cipher: TokenCipherService) -> None:
        self._store = store
        self._cipher = cipher

    def store(self, user_id: str, platform_id: str, credential: PlatformCredential) -> None:
        """Encrypt and persist a credential, replacing any previous connection."""
        timestamp = now_ms()
        keys = _keys(user_id, platform_id)
        record: Dict[str, Any] = {
            "pk": keys["partition_key"],
            "sk": keys["sort_key"],
            "user_id": user_id,
            "platform_id": platform_id,
            "connected_at": credential.connected_at or timestamp,
            "updated_at": timestamp,
        }
        for name in SECRET_FIELDS:
            record[name] = self._seal(getattr(credential, name))
        for name in _PLAIN_FIELDS:
            record[name] = getattr(credential, name)
        self._store.put_item(record)
        logger.info(
            "Stored encrypted credential",
            extra={"user_id": user_id, "platform_id": platform_id},
        )

    def retrieve(self, user_id: str, platform_id: str) -> PlatformCredential:
        """Decrypt a stored credential.

        Raises ``NotFound`` when absent and ``IntegrityError`` when any secret
        field fails authentication.
        """
        record = self._store.get_item(**_keys(user_id, platform_id))
        if not record:
            raise NotFound(f"No credential stored for {platform_id}.")
        if not record.get("access_secret"):
            raise IntegrityError("Stored credential is missing its access secret.")

        opened = {name: self._open(record.get(name)) for name in SECRET_FIELDS}
        return PlatformCredential(
            access_secret=opened["access_secret"],
            refresh_secret=opened["refresh_secret"],
            page_secret=opened["page_secret"],
            external_account_id=record.get("external_account_id"),
            page_id=record.get("page_id"),
            scope=record.get("scope"),
            expires_at=record.get("expires_at"),
            connected_at=record.get("connected_at"),
            updated_at=record.get("updated_at"),
        )

    def update(
        self, user_id: str, platform_id: str, fields: Mapping[str, Any]
    ) -> None:
        """Merge ``fields`` into the stored record, re-encrypting only supplied secrets.

        A secret field mapped to ``None`` is cleared. Unknown field names are
        rejected so a typo cannot silently drop a refreshed secret.
        """
        unknown = set(fields) - set(SECRET_FIELDS) - set(_PLAIN_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported credential fields: {sorted(unknown)}")

        def _merge(record: Dict[str, Any]) -> Dict[str, Any]:
            for name, value in fields.items():
                if name in SECRET_FIELDS:
                    record[name] = self._seal(value)
                else:
                    record[name] = value
            record["updated_at"] = now_ms()
            return record

        updated = self._store.update_item(**_keys(user_id, platform_id), mutate=_merge)
        if updated is None:
            raise NotFound(f"No credential stored for {platform_id}.")
        logger.info(
            "Updated credential fields %s",
            sorted(fields),
            extra={"user_id": user_id, "platform_id": platform_id},
        )

    def remove(self, user_id: str, platform_id: str) -> bool:
        removed = self._store.delete_item(**_keys(user_id, platform_id))
        if removed:
            logger.info(
                "Removed credential",
                extra={"user_id": user_id, "platform_id": platform_id},
            )
        return removed

    def is_connected(self, user_id: str, platform_id: str) -> bool:
        return self._store.get_item(**_keys(user_id, platform_id)) is not None

    def list_connected(self, user_id: str) -> List[ConnectedPlatform]:
        records = self._store.list_items_with_prefix(
            partition_key=f"user#{user_id}", sort_key_prefix=_SORT_KEY_PREFIX
        )
        return [
            ConnectedPlatform(
                platform_id=record["platform_id"],
                connected_at=record.get("connected_at"),
                updated_at=record.get("updated_at"),
                expires_at=record.get("expires_at"),
                scope=record.get("scope"),
                external_account_id=record.get("external_account_id"),
            )
            for record in records
        ]

    def _seal(self, value: Optional[str]) -> Optional[Dict[str, str]]:
        if value is None:
            return None
        return self._cipher.encrypt(value).to_dict()

    def _open(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        if payload is None:
            return None
        try:
            secret = EncryptedSecret.from_dict(payload)
        except (KeyError, TypeError) as exc:
            raise IntegrityError("Stored credential is malformed.") from exc
        return self._cipher.decrypt(secret)


__all__ = ["CredentialVault"]
