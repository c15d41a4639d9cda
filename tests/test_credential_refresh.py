try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs

import httpx
import pytest

from syndicate.clients.oauth import PlatformOAuthClient
from syndicate.core.errors import TokenExchangeError
from syndicate.models.credentials import PlatformCredential
from syndicate.services.credential_refresh import CredentialRefresher
from syndicate.services.platform_registry import get_adapter


def _refresher(vault, provider_settings, oauth_settings, handler) -> CredentialRefresher:
    client = PlatformOAuthClient(
        provider_settings, oauth_settings, transport=httpx.MockTransport(handler)
    )
    return CredentialRefresher(vault, client)


@pytest.mark.asyncio
async def test_rotating_refresh_stores_new_refresh_secret(
    vault, provider_settings, oauth_settings
) -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(parse_qs(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 7200},
        )

    vault.store("user-1", "x", PlatformCredential(access_secret="access-1", refresh_secret="refresh-1"))
    refresher = _refresher(vault, provider_settings, oauth_settings, handler)

    updated = await refresher.refresh("user-1", get_adapter("x"), vault.retrieve("user-1", "x"))

    assert seen[0]["grant_type"] == ["refresh_token"]
    assert seen[0]["refresh_token"] == ["refresh-1"]
    assert updated.access_secret == "access-2"
    assert updated.refresh_secret == "refresh-2"
    stored = vault.retrieve("user-1", "x")
    assert stored.access_secret == "access-2"
    assert stored.refresh_secret == "refresh-2"
    assert stored.expires_at is not None


@pytest.mark.asyncio
async def test_static_refresh_keeps_refresh_secret(
    vault, provider_settings, oauth_settings
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"access_token": "yt-2", "refresh_token": "should-be-ignored", "expires_in": 3600},
        )

    vault.store(
        "user-1", "youtube", PlatformCredential(access_secret="yt-1", refresh_secret="yt-refresh")
    )
    refresher = _refresher(vault, provider_settings, oauth_settings, handler)

    await refresher.refresh("user-1", get_adapter("youtube"), vault.retrieve("user-1", "youtube"))

    stored = vault.retrieve("user-1", "youtube")
    assert stored.access_secret == "yt-2"
    assert stored.refresh_secret == "yt-refresh"


@pytest.mark.asyncio
async def test_page_chain_refreshes_user_and_page_tokens(
    vault, provider_settings, oauth_settings
) -> None:
    exchanged: list[str] = []
    listed_with: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/me/accounts"):
            listed_with.append(request.url.params["access_token"])
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "other-page", "access_token": "other-page-token"},
                        {"id": "page-1", "access_token": "page-token-renewed"},
                    ]
                },
            )
        token = request.url.params["fb_exchange_token"]
        exchanged.append(token)
        return httpx.Response(200, json={"access_token": f"{token}-renewed", "expires_in": 60})

    vault.store(
        "user-1",
        "instagram",
        PlatformCredential(
            access_secret="user-token",
            page_secret="page-token",
            page_id="page-1",
            external_account_id="ig-1",
        ),
    )
    refresher = _refresher(vault, provider_settings, oauth_settings, handler)

    updated = await refresher.refresh(
        "user-1", get_adapter("instagram"), vault.retrieve("user-1", "instagram")
    )

    assert exchanged == ["user-token"]
    assert listed_with == ["user-token-renewed"]
    assert updated.access_secret == "user-token-renewed"
    assert updated.page_secret == "page-token-renewed"
    assert vault.retrieve("user-1", "instagram").page_secret == "page-token-renewed"


@pytest.mark.asyncio
async def test_facebook_refresh_renews_page_token(
    vault, provider_settings, oauth_settings
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/me/accounts"):
            return httpx.Response(
                200, json={"data": [{"id": "page-1", "access_token": "page-new"}]}
            )
        return httpx.Response(200, json={"access_token": "user-new", "expires_in": 60})

    vault.store(
        "user-1",
        "facebook",
        PlatformCredential(access_secret="user-old", page_secret="page-old", page_id="page-1"),
    )
    refresher = _refresher(vault, provider_settings, oauth_settings, handler)

    updated = await refresher.refresh(
        "user-1", get_adapter("facebook"), vault.retrieve("user-1", "facebook")
    )

    assert updated.page_secret == "page-new"
    assert vault.retrieve("user-1", "facebook").page_secret == "page-new"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "accounts",
    [
        httpx.Response(400, json={"error": {"message": "page gone"}}),
        httpx.Response(200, json={"data": []}),
    ],
    ids=["lookup-rejected", "page-no-longer-granted"],
)
async def test_page_refresh_failure_keeps_existing_page_token(
    vault, provider_settings, oauth_settings, accounts
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/me/accounts"):
            return accounts
        return httpx.Response(200, json={"access_token": "user-token-renewed"})

    vault.store(
        "user-1",
        "instagram",
        PlatformCredential(access_secret="user-token", page_secret="page-token", page_id="page-1"),
    )
    refresher = _refresher(vault, provider_settings, oauth_settings, handler)

    updated = await refresher.refresh(
        "user-1", get_adapter("instagram"), vault.retrieve("user-1", "instagram")
    )

    stored = vault.retrieve("user-1", "instagram")
    assert updated.access_secret == stored.access_secret == "user-token-renewed"
    assert updated.page_secret == stored.page_secret == "page-token"


@pytest.mark.asyncio
async def test_failed_refresh_leaves_vault_unchanged(
    vault, record_store, provider_settings, oauth_settings
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    vault.store("user-1", "x", PlatformCredential(access_secret="access-1", refresh_secret="refresh-1"))
    before = record_store.get_item(partition_key="user#user-1", sort_key="credential#x")
    refresher = _refresher(vault, provider_settings, oauth_settings, handler)

    with pytest.raises(TokenExchangeError) as excinfo:
        await refresher.refresh("user-1", get_adapter("x"), vault.retrieve("user-1", "x"))

    assert excinfo.value.status_code == 400
    assert record_store.get_item(partition_key="user#user-1", sort_key="credential#x") == before


@pytest.mark.asyncio
async def test_platform_without_refresh_raises(vault, provider_settings, oauth_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("no request expected")

    refresher = _refresher(vault, provider_settings, oauth_settings, handler)
    with pytest.raises(TokenExchangeError):
        await refresher.refresh(
            "user-1", get_adapter("medium"), PlatformCredential(access_secret="m-1")
        )


@pytest.mark.asyncio
async def test_missing_refresh_secret_raises(vault, provider_settings, oauth_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("no request expected")

    refresher = _refresher(vault, provider_settings, oauth_settings, handler)
    with pytest.raises(TokenExchangeError):
        await refresher.refresh(
            "user-1", get_adapter("linkedin"), PlatformCredential(access_secret="li-1")
        )
