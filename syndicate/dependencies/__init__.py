"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    build_scheduler_runner,
    get_authorization_state_manager,
    get_billing_webhook_processor,
    get_credential_vault,
    get_dispatch_engine,
    get_idempotency_store,
    get_intent_store,
    get_oauth_state_signer,
    get_plan_limit_service,
    get_platform_oauth_client,
    get_post_intent_service,
    get_sqlite_store,
    get_token_cipher_service,
    verify_startup_configuration,
)
from .config import get_app_settings

__all__ = [
    "build_scheduler_runner",
    "get_app_settings",
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
