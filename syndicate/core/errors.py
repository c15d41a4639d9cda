"""
Error taxonomy shared by the vault, authorization flow and dispatch engine.

Messages carried by these exceptions are safe to log and to show to callers;
they never include plaintext secrets.
"""

from __future__ import annotations

from typing import Any, Optional


class SyndicateError(Exception):
    """Base class for every domain error raised by the integration core."""

    code = "internal_error"
    #: Failure record of the intent this error ended, when dispatch raised it.
    snapshot: Optional[dict[str, Any]] = None


class ConfigurationError(SyndicateError):
    """Raised at startup when required configuration is missing or malformed."""

    code = "configuration_error"


class NotFound(SyndicateError):
    """Raised when a requested record does not exist (or was already consumed)."""

    code = "not_found"


class NotConnected(SyndicateError):
    """Raised when a user has no usable credential for a platform."""

    code = "not_connected"


class InvalidState(SyndicateError):
    """Raised when an OAuth state parameter is expired, forged or malformed."""

    code = "invalid_state"


class ProviderDenied(SyndicateError):
    """Raised when the provider reports that the user refused consent."""

    code = "provider_denied"

    def __init__(
        self,
        platform_id: str,
        reason: str,
        description: Optional[str] = None,
        *,
        redirect_to: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        self.platform_id = platform_id
        self.reason = reason
        self.description = description
        self.redirect_to = redirect_to
        self.correlation_id = correlation_id
        super().__init__(f"{platform_id} authorization was not granted ({reason}).")


class IntegrityError(SyndicateError):
    """Raised when stored ciphertext fails authentication on decrypt."""

    code = "integrity_error"


class UnsupportedPlatform(SyndicateError):
    """Raised when no adapter is registered for a platform identifier."""

    code = "unsupported_platform"

    def __init__(self, platform_id: str, detail: Optional[str] = None) -> None:
        self.platform_id = platform_id
        super().__init__(detail or f"Platform {platform_id!r} is not supported.")


class QuotaExceeded(SyndicateError):
    """Raised when the billing collaborator rejects a plan-limited action."""

    code = "quota_exceeded"

    def __init__(self, reason: str, *, plan: Optional[str] = None) -> None:
        self.plan = plan
        super().__init__(reason)


class TokenExchangeError(SyndicateError):
    """Raised when a token endpoint rejects an exchange or refresh."""

    code = "token_exchange_failed"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ClaimConflict(SyndicateError):
    """Raised when an intent cannot be claimed because another worker owns it."""

    code = "claim_conflict"


class UpstreamHTTPError(SyndicateError):
    """A non-success response returned by an external platform API."""

    code = "upstream_error"

    def __init__(
        self,
        status_code: int,
        body: Any = None,
        *,
        platform_id: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.platform_id = platform_id
        label = platform_id or "upstream"
        super().__init__(f"{label} responded with HTTP {status_code}")


class RetryExhaustedError(SyndicateError):
    """Raised by the request executor once an operation can no longer succeed."""

    code = "retry_exhausted"

    def __init__(self, message: str, *, last_error: BaseException, report: Any) -> None:
        self.last_error = last_error
        self.report = report
        super().__init__(message)


class DispatchFailed(SyndicateError):
    """Terminal dispatch failure carrying a structured, secret-free snapshot."""

    code = "dispatch_failed"

    def __init__(self, message: str, *, snapshot: dict[str, Any]) -> None:
        self.snapshot = snapshot
        super().__init__(message)


__all__ = [
    "ClaimConflict",
    "ConfigurationError",
    "DispatchFailed",
    "IntegrityError",
    "InvalidState",
    "NotConnected",
    "NotFound",
    "ProviderDenied",
    "QuotaExceeded",
    "RetryExhaustedError",
    "SyndicateError",
    "TokenExchangeError",
    "UnsupportedPlatform",
    "UpstreamHTTPError",
]
