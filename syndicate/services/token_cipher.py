"""Authenticated symmetric encryption for stored platform secrets."""

from __future__ import annotations

import binascii
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from syndicate.core.errors import ConfigurationError, IntegrityError
from syndicate.models.credentials import EncryptedSecret

_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
_IV_BYTES = 12
_TAG_BYTES = 16


class TokenCipherService:
    """Encrypt and decrypt secrets with AES-256-GCM and a fresh IV per call."""

    def __init__(self, *, key_hex: str | None) -> None:
        if not key_hex:
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY must be set to a 64-character hex string (256 bits)."
            )
        if not _KEY_PATTERN.match(key_hex):
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY must be a 64-character hex string (256 bits)."
            )
        self._aead = AESGCM(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        """Encrypt a plaintext string; ciphertext, IV and tag are returned separately."""
        iv = os.urandom(_IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return EncryptedSecret(
            ciphertext=ciphertext.hex(),
            iv=iv.hex(),
            tag=tag.hex(),
        )

    def decrypt(self, secret: EncryptedSecret) -> str:
        """Decrypt and authenticate a stored secret."""
        try:
            iv = bytes.fromhex(secret.iv)
            sealed = bytes.fromhex(secret.ciphertext) + bytes.fromhex(secret.tag)
        except (ValueError, binascii.Error) as exc:
            raise IntegrityError("Stored credential is malformed.") from exc
        if len(iv) != _IV_BYTES:
            raise IntegrityError("Stored credential is malformed.")
        try:
            plaintext = self._aead.decrypt(iv, sealed, None)
        except InvalidTag as exc:
            raise IntegrityError(
                "Stored credential failed authentication; it was altered or the key changed."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
