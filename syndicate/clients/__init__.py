"""Expose constructed client wrappers."""

from .idempotency_store import SQLiteIdempotencyStore
from .intent_store import SQLiteIntentStore
from .oauth import OAuthStateSigner, PlatformOAuthClient, TokenGrant, generate_pkce
from .sqlite_store import SQLiteStore

__all__ = [
    "OAuthStateSigner",
    "PlatformOAuthClient",
    "SQLiteIdempotencyStore",
    "SQLiteIntentStore",
    "SQLiteStore",
    "TokenGrant",
    "generate_pkce",
]
