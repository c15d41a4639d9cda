try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from dataclasses import replace

import pytest

from syndicate.core.errors import ConfigurationError, IntegrityError, NotFound
from syndicate.models.credentials import EncryptedSecret, PlatformCredential
from syndicate.services.token_cipher import TokenCipherService


def test_token_cipher_roundtrip(cipher) -> None:
    plaintext = "sensitive-token"

    encrypted = cipher.encrypt(plaintext)
    assert plaintext not in encrypted.ciphertext
    assert len(encrypted.iv) == 24
    assert len(encrypted.tag) == 32

    assert cipher.decrypt(encrypted) == plaintext


def test_token_cipher_uses_fresh_iv_per_call(cipher) -> None:
    first = cipher.encrypt("same")
    second = cipher.encrypt("same")
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


@pytest.mark.parametrize("key", [None, "", "abc", "zz" * 32, "0" * 63])
def test_token_cipher_rejects_bad_keys(key) -> None:
    with pytest.raises(ConfigurationError):
        TokenCipherService(key_hex=key)


def test_token_cipher_detects_tampering(cipher) -> None:
    encrypted = cipher.encrypt("sensitive-token")
    flipped = "%02x" % (int(encrypted.ciphertext[:2], 16) ^ 0x01)
    tampered = replace(encrypted, ciphertext=flipped + encrypted.ciphertext[2:])

    with pytest.raises(IntegrityError):
        cipher.decrypt(tampered)


def test_token_cipher_rejects_bad_ciphertext(cipher) -> None:
    with pytest.raises(IntegrityError):
        cipher.decrypt(EncryptedSecret(ciphertext="not-hex", iv="00", tag="00"))


def test_token_cipher_rejects_foreign_key(cipher) -> None:
    other = TokenCipherService(key_hex="f" * 64)
    with pytest.raises(IntegrityError):
        other.decrypt(cipher.encrypt("sensitive-token"))


def test_vault_store_and_retrieve(vault, record_store) -> None:
    vault.store(
        "user-1",
        "x",
        PlatformCredential(
            access_secret="access-1",
            refresh_secret="refresh-1",
            scope="tweet.write",
            expires_at=1_700_000_000_000,
        ),
    )

    raw = record_store.get_item(partition_key="user#user-1", sort_key="credential#x")
    assert "access-1" not in str(raw)
    assert raw["page_secret"] is None

    credential = vault.retrieve("user-1", "x")
    assert credential.access_secret == "access-1"
    assert credential.refresh_secret == "refresh-1"
    assert credential.page_secret is None
    assert credential.expires_at == 1_700_000_000_000
    assert "access-1" not in repr(credential)


def test_vault_retrieve_missing_raises_not_found(vault) -> None:
    with pytest.raises(NotFound):
        vault.retrieve("user-1", "linkedin")


def test_vault_detects_tampered_record(vault, record_store) -> None:
    vault.store("user-1", "x", PlatformCredential(access_secret="access-1"))

    def _corrupt(record):
        record["access_secret"]["tag"] = "0" * 32
        return record

    record_store.update_item(
        partition_key="user#user-1", sort_key="credential#x", mutate=_corrupt
    )

    with pytest.raises(IntegrityError):
        vault.retrieve("user-1", "x")


def test_vault_update_only_touches_supplied_fields(vault, record_store) -> None:
    vault.store(
        "user-1",
        "instagram",
        PlatformCredential(
            access_secret="user-token",
            page_secret="page-token",
            external_account_id="ig-1",
            page_id="page-1",
        ),
    )
    before = record_store.get_item(partition_key="user#user-1", sort_key="credential#instagram")

    vault.update("user-1", "instagram", {"access_secret": "user-token-2", "expires_at": 42})

    after = record_store.get_item(partition_key="user#user-1", sort_key="credential#instagram")
    assert after["page_secret"] == before["page_secret"]
    assert after["access_secret"] != before["access_secret"]

    credential = vault.retrieve("user-1", "instagram")
    assert credential.access_secret == "user-token-2"
    assert credential.page_secret == "page-token"
    assert credential.external_account_id == "ig-1"
    assert credential.expires_at == 42


def test_vault_update_rejects_unknown_fields(vault) -> None:
    vault.store("user-1", "x", PlatformCredential(access_secret="a"))
    with pytest.raises(ValueError):
        vault.update("user-1", "x", {"acess_secret": "typo"})


def test_vault_update_missing_record(vault) -> None:
    with pytest.raises(NotFound):
        vault.update("user-1", "x", {"access_secret": "a"})


def test_vault_lists_connected_without_secrets(vault) -> None:
    vault.store("user-1", "x", PlatformCredential(access_secret="a", scope="tweet.write"))
    vault.store("user-1", "linkedin", PlatformCredential(access_secret="b"))
    vault.store("user-2", "reddit", PlatformCredential(access_secret="c"))

    connected = vault.list_connected("user-1")

    assert sorted(item.platform_id for item in connected) == ["linkedin", "x"]
    dumped = str([item.model_dump() for item in connected])
    assert "'a'" not in dumped and "'b'" not in dumped


def test_vault_remove(vault) -> None:
    vault.store("user-1", "x", PlatformCredential(access_secret="a"))
    assert vault.remove("user-1", "x") is True
    assert vault.remove("user-1", "x") is False
    with pytest.raises(NotFound):
        vault.retrieve("user-1", "x")
