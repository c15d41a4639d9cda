"""Pytest configuration shared across the suite."""

from __future__ import annotations

import pytest

try:
    from . import _bootstrap
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "syndicate.db")


@pytest.fixture
def cipher():
    from syndicate.services.token_cipher import TokenCipherService

    return TokenCipherService(key_hex=_bootstrap.TEST_ENCRYPTION_KEY)


@pytest.fixture
def record_store(db_path):
    from syndicate.clients.sqlite_store import SQLiteStore

    return SQLiteStore(db_path)


@pytest.fixture
def intent_store(db_path):
    from syndicate.clients.intent_store import SQLiteIntentStore

    return SQLiteIntentStore(db_path)


@pytest.fixture
def vault(record_store, cipher):
    from syndicate.services.credential_vault import CredentialVault

    return CredentialVault(record_store, cipher)


@pytest.fixture
def provider_settings():
    from syndicate.core.config import ProviderSettings

    return ProviderSettings()


@pytest.fixture
def oauth_settings():
    from syndicate.core.config import OAuthSettings

    return OAuthSettings()
