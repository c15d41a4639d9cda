"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from syndicate.clients import (
    OAuthStateSigner,
    PlatformOAuthClient,
    SQLiteIdempotencyStore,
    SQLiteIntentStore,
    SQLiteStore,
)
from syndicate.core.config import get_settings
from syndicate.services import (
    AuthorizationStateManager,
    BillingWebhookProcessor,
    CredentialRefresher,
    CredentialVault,
    DispatchEngine,
    PlanLimitService,
    PostIntentService,
    RecordStoreAnalyticsSink,
    RequestExecutor,
    SchedulerRunner,
    TokenCipherService,
)
from syndicate.utils.http import RetryConfig


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite record store."""
    return SQLiteStore(_settings().database_path)


@lru_cache()
def get_intent_store() -> SQLiteIntentStore:
    """Provide the post intent table."""
    return SQLiteIntentStore(_settings().database_path)


@lru_cache()
def get_idempotency_store() -> SQLiteIdempotencyStore:
    """Provide the webhook idempotency ledger."""
    return SQLiteIdempotencyStore(_settings().database_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide AES-GCM helper; raises ``ConfigurationError`` without a valid key."""
    return TokenCipherService(key_hex=_settings().security.token_encryption_key)


@lru_cache()
def get_credential_vault() -> CredentialVault:
    return CredentialVault(get_sqlite_store(), get_token_cipher_service())


@lru_cache()
def get_oauth_state_signer() -> OAuthStateSigner:
    settings = _settings()
    return OAuthStateSigner(
        secret_key=settings.security.oauth_state_secret or "",
        ttl_seconds=settings.oauth.state_ttl_seconds,
    )


@lru_cache()
def get_platform_oauth_client() -> PlatformOAuthClient:
    settings = _settings()
    return PlatformOAuthClient(settings.providers, settings.oauth)


@lru_cache()
def get_authorization_state_manager() -> AuthorizationStateManager:
    return AuthorizationStateManager(
        store=get_sqlite_store(),
        signer=get_oauth_state_signer(),
        oauth_client=get_platform_oauth_client(),
        vault=get_credential_vault(),
        ttl_seconds=_settings().oauth.state_ttl_seconds,
    )


@lru_cache()
def get_plan_limit_service() -> PlanLimitService:
    return PlanLimitService(get_sqlite_store(), get_intent_store())


@lru_cache()
def get_dispatch_engine() -> DispatchEngine:
    """Build the dispatch engine with the configured retry policy."""
    dispatch = _settings().dispatch
    executor = RequestExecutor(
        RetryConfig(
            attempts=dispatch.max_attempts,
            backoff_seconds=dispatch.base_delay_seconds,
            max_backoff_seconds=dispatch.max_delay_seconds,
            timeout_seconds=dispatch.request_timeout_seconds,
        )
    )
    return DispatchEngine(
        intents=get_intent_store(),
        vault=get_credential_vault(),
        refresher=CredentialRefresher(get_credential_vault(), get_platform_oauth_client()),
        executor=executor,
        analytics=RecordStoreAnalyticsSink(get_sqlite_store()),
        request_timeout=dispatch.request_timeout_seconds,
    )


@lru_cache()
def get_post_intent_service() -> PostIntentService:
    return PostIntentService(
        intents=get_intent_store(),
        limits=get_plan_limit_service(),
        dispatcher=get_dispatch_engine(),
        is_connected=get_credential_vault().is_connected,
    )


@lru_cache()
def get_billing_webhook_processor() -> BillingWebhookProcessor:
    return BillingWebhookProcessor(
        get_idempotency_store(),
        get_plan_limit_service(),
        secret=_settings().security.billing_webhook_secret,
    )


def build_scheduler_runner() -> SchedulerRunner:
    """Create a scheduler bound to the shared store and engine (not cached)."""
    scheduler = _settings().scheduler
    return SchedulerRunner(
        get_intent_store(),
        get_dispatch_engine(),
        interval_seconds=scheduler.interval_seconds,
        stale_claim_ms=scheduler.stale_claim_seconds * 1000,
    )


def verify_startup_configuration() -> None:
    """Build key-dependent services eagerly so misconfiguration fails at start."""
    get_credential_vault()
    get_oauth_state_signer()


__all__ = [
    "build_scheduler_runner",
    "get_authorization_state_manager",
    "get_billing_webhook_processor",
    "get_credential_vault",
    "get_dispatch_engine",
    "get_idempotency_store",
    "get_intent_store",
    "get_oauth_state_signer",
    "get_plan_limit_service",
    "get_platform_oauth_client",
    "get_post_intent_service",
    "get_sqlite_store",
    "get_token_cipher_service",
    "verify_startup_configuration",
]
