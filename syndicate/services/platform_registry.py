"""
Typed table of supported publishing platforms.

Each row carries the OAuth endpoints, token request style, refresh strategy,
idempotency header and publish function for one platform. Adding a platform
means one ``PlatformId`` member, one row and one publish function.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from syndicate.clients.publishers import (
    PublishFunction,
    graph_token_expired,
    publish_discord,
    publish_facebook,
    publish_instagram,
    publish_linkedin,
    publish_medium,
    publish_patreon,
    publish_reddit,
    publish_threads,
    publish_tiktok,
    publish_x,
    publish_youtube,
)
from syndicate.core.errors import UnsupportedPlatform, UpstreamHTTPError


class PlatformId(str, Enum):
    X = "x"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    THREADS = "threads"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    REDDIT = "reddit"
    DISCORD = "discord"
    MEDIUM = "medium"
    PATREON = "patreon"


class RefreshStrategy(str, Enum):
    ROTATING_REFRESH_TOKEN = "rotating_refresh_token"
    STATIC_REFRESH_TOKEN = "static_refresh_token"
    LONG_LIVED_EXCHANGE = "long_lived_exchange"
    PAGE_TOKEN_CHAIN = "page_token_chain"
    NONE = "none"


class TokenRequestStyle(str, Enum):
    FORM = "form"
    FORM_BASIC = "form_basic"
    JSON = "json"


AuthFailureDetector = Callable[[BaseException], bool]


def is_unauthorized(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamHTTPError) and exc.status_code == 401


@dataclass(frozen=True)
class PlatformAdapter:
    platform_id: PlatformId
    provider_family: str
    authorization_url: str
    token_url: str
    scopes: tuple[str, ...]
    refresh_strategy: RefreshStrategy
    publish: PublishFunction
    requires_pkce: bool = False
    token_request_style: TokenRequestStyle = TokenRequestStyle.FORM
    idempotency_header: Optional[str] = None
    is_auth_failure: AuthFailureDetector = is_unauthorized
    client_id_param: str = "client_id"
    scope_separator: str = " "
    extra_authorize_params: Mapping[str, str] = field(default_factory=dict)

    @property
    def callback_path(self) -> str:
        return f"/api/platforms/{self.platform_id.value}/oauth/callback"

    @property
    def manages_pages(self) -> bool:
        """Facebook and Instagram publish through a managed page."""
        return self.provider_family == "facebook"


_FACEBOOK_DIALOG = "https://www.facebook.com/v18.0/dialog/oauth"
_FACEBOOK_TOKEN = "https://graph.facebook.com/v18.0/oauth/access_token"

_ADAPTERS: Mapping[PlatformId, PlatformAdapter] = MappingProxyType(
    {
        PlatformId.X: PlatformAdapter(
            platform_id=PlatformId.X,
            provider_family="twitter",
            authorization_url="https://twitter.com/i/oauth2/authorize",
            token_url="https://api.twitter.com/2/oauth2/token",
            scopes=("tweet.read", "tweet.write", "users.read", "offline.access"),
            refresh_strategy=RefreshStrategy.ROTATING_REFRESH_TOKEN,
            publish=publish_x,
            requires_pkce=True,
            token_request_style=TokenRequestStyle.FORM_BASIC,
        ),
        PlatformId.LINKEDIN: PlatformAdapter(
            platform_id=PlatformId.LINKEDIN,
            provider_family="linkedin",
            authorization_url="https://www.linkedin.com/oauth/v2/authorization",
            token_url="https://www.linkedin.com/oauth/v2/accessToken",
            scopes=("openid", "profile", "email", "w_member_social"),
            refresh_strategy=RefreshStrategy.ROTATING_REFRESH_TOKEN,
            publish=publish_linkedin,
            requires_pkce=True,
            idempotency_header="X-Idempotency-Key",
        ),
        PlatformId.FACEBOOK: PlatformAdapter(
            platform_id=PlatformId.FACEBOOK,
            provider_family="facebook",
            authorization_url=_FACEBOOK_DIALOG,
            token_url=_FACEBOOK_TOKEN,
            scopes=("pages_manage_posts", "pages_read_engagement", "pages_show_list"),
            refresh_strategy=RefreshStrategy.PAGE_TOKEN_CHAIN,
            publish=publish_facebook,
            is_auth_failure=graph_token_expired,
            scope_separator=",",
        ),
        PlatformId.INSTAGRAM: PlatformAdapter(
            platform_id=PlatformId.INSTAGRAM,
            provider_family="facebook",
            authorization_url=_FACEBOOK_DIALOG,
            token_url=_FACEBOOK_TOKEN,
            scopes=(
                "instagram_basic",
                "instagram_content_publish",
                "pages_show_list",
                "pages_read_engagement",
            ),
            refresh_strategy=RefreshStrategy.PAGE_TOKEN_CHAIN,
            publish=publish_instagram,
            is_auth_failure=graph_token_expired,
            scope_separator=",",
        ),
        PlatformId.THREADS: PlatformAdapter(
            platform_id=PlatformId.THREADS,
            provider_family="threads",
            authorization_url="https://www.threads.net/oauth/authorize",
            token_url="https://graph.threads.net/oauth/access_token",
            scopes=("threads_basic", "threads_content_publish"),
            refresh_strategy=RefreshStrategy.LONG_LIVED_EXCHANGE,
            publish=publish_threads,
            is_auth_failure=graph_token_expired,
            scope_separator=",",
        ),
        PlatformId.TIKTOK: PlatformAdapter(
            platform_id=PlatformId.TIKTOK,
            provider_family="tiktok",
            authorization_url="https://www.tiktok.com/v2/auth/authorize/",
            token_url="https://open.tiktokapis.com/v2/oauth/token/",
            scopes=("user.info.basic", "video.upload", "video.publish"),
            refresh_strategy=RefreshStrategy.ROTATING_REFRESH_TOKEN,
            publish=publish_tiktok,
            requires_pkce=True,
            client_id_param="client_key",
            scope_separator=",",
        ),
        PlatformId.YOUTUBE: PlatformAdapter(
            platform_id=PlatformId.YOUTUBE,
            provider_family="google",
            authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            scopes=(
                "https://www.googleapis.com/auth/youtube.upload",
                "https://www.googleapis.com/auth/youtube",
            ),
            refresh_strategy=RefreshStrategy.STATIC_REFRESH_TOKEN,
            publish=publish_youtube,
            extra_authorize_params=MappingProxyType(
                {"access_type": "offline", "prompt": "consent"}
            ),
        ),
        PlatformId.REDDIT: PlatformAdapter(
            platform_id=PlatformId.REDDIT,
            provider_family="reddit",
            authorization_url="https://www.reddit.com/api/v1/authorize",
            token_url="https://www.reddit.com/api/v1/access_token",
            scopes=("submit", "read", "identity"),
            refresh_strategy=RefreshStrategy.ROTATING_REFRESH_TOKEN,
            publish=publish_reddit,
            requires_pkce=True,
            token_request_style=TokenRequestStyle.FORM_BASIC,
            extra_authorize_params=MappingProxyType({"duration": "permanent"}),
        ),
        PlatformId.DISCORD: PlatformAdapter(
            platform_id=PlatformId.DISCORD,
            provider_family="discord",
            authorization_url="https://discord.com/api/oauth2/authorize",
            token_url="https://discord.com/api/oauth2/token",
            scopes=("bot", "messages.read"),
            refresh_strategy=RefreshStrategy.ROTATING_REFRESH_TOKEN,
            publish=publish_discord,
        ),
        PlatformId.MEDIUM: PlatformAdapter(
            platform_id=PlatformId.MEDIUM,
            provider_family="medium",
            authorization_url="https://medium.com/m/oauth/authorize",
            token_url="https://api.medium.com/v1/tokens",
            scopes=("basicProfile", "publishPost"),
            refresh_strategy=RefreshStrategy.NONE,
            publish=publish_medium,
            token_request_style=TokenRequestStyle.JSON,
            scope_separator=",",
        ),
        PlatformId.PATREON: PlatformAdapter(
            platform_id=PlatformId.PATREON,
            provider_family="patreon",
            authorization_url="https://www.patreon.com/oauth2/authorize",
            token_url="https://www.patreon.com/api/oauth2/token",
            scopes=("identity", "campaigns", "campaigns.posts"),
            refresh_strategy=RefreshStrategy.ROTATING_REFRESH_TOKEN,
            publish=publish_patreon,
        ),
    }
)

_ALIASES = {"twitter": PlatformId.X}


def check_registry_complete() -> None:
    """Every ``PlatformId`` member must have exactly one matching row."""
    missing = [member.value for member in PlatformId if member not in _ADAPTERS]
    if missing:
        raise RuntimeError(f"Platform registry is missing adapters for: {missing}")
    mismatched = [key.value for key, row in _ADAPTERS.items() if row.platform_id is not key]
    if mismatched:
        raise RuntimeError(f"Platform registry rows are keyed incorrectly: {mismatched}")


check_registry_complete()


def resolve_platform_id(platform_id: str) -> PlatformId:
    normalized = platform_id.strip().lower()
    if normalized in _ALIASES:
        return _ALIASES[normalized]
    try:
        return PlatformId(normalized)
    except ValueError as exc:
        raise UnsupportedPlatform(platform_id) from exc


def get_adapter(platform_id: str | PlatformId) -> PlatformAdapter:
    """Return the adapter row; ``UnsupportedPlatform`` for unknown identifiers."""
    if not isinstance(platform_id, PlatformId):
        platform_id = resolve_platform_id(platform_id)
    return _ADAPTERS[platform_id]


def all_adapters() -> list[PlatformAdapter]:
    return list(_ADAPTERS.values())


__all__ = [
    "AuthFailureDetector",
    "PlatformAdapter",
    "PlatformId",
    "RefreshStrategy",
    "TokenRequestStyle",
    "all_adapters",
    "check_registry_complete",
    "get_adapter",
    "is_unauthorized",
    "resolve_platform_id",
]
