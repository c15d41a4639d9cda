"""Service layer exports."""

from .billing import BillingWebhookProcessor, PlanLimitService, RecordStoreAnalyticsSink
from .credential_refresh import CredentialRefresher
from .credential_vault import CredentialVault
from .dispatch import DispatchEngine
from .oauth_handshake import AuthorizationStateManager
from .platform_registry import PlatformAdapter, PlatformId, RefreshStrategy, get_adapter
from .post_intents import PostIntentService
from .request_executor import ExecutionReport, RequestExecutor
from .scheduler import SchedulerRunner, run_sweep
from .token_cipher import TokenCipherService

__all__ = [
    "AuthorizationStateManager",
    "BillingWebhookProcessor",
    "CredentialRefresher",
    "CredentialVault",
    "DispatchEngine",
    "ExecutionReport",
    "PlanLimitService",
    "PlatformAdapter",
    "PlatformId",
    "PostIntentService",
    "RecordStoreAnalyticsSink",
    "RefreshStrategy",
    "RequestExecutor",
    "SchedulerRunner",
    "TokenCipherService",
    "get_adapter",
    "run_sweep",
]
