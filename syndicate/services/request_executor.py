"""
Single retry/refresh loop shared by every outbound platform call.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from syndicate.core.errors import RetryExhaustedError, UpstreamHTTPError
from syndicate.models.credentials import PlatformCredential
from syndicate.utils.clock import now_ms
from syndicate.utils.http import RetryConfig, compute_backoff, is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[PlatformCredential], Awaitable[T]]
Refresher = Callable[[PlatformCredential], Awaitable[PlatformCredential]]
AuthFailureDetector = Callable[[BaseException], bool]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class AttemptRecord:
    number: int
    elapsed_ms: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    after_refresh: bool = False


@dataclass(slots=True)
class ExecutionReport:
    correlation_id: Optional[str] = None
    attempts: List[AttemptRecord] = field(default_factory=list)
    delays: List[float] = field(default_factory=list)
    refreshed: bool = False

    def to_dict(self) -> dict:
        return {
            "correlation_id": self.correlation_id,
            "attempts": [
                {
                    "number": a.number,
                    "elapsed_ms": a.elapsed_ms,
                    "status_code": a.status_code,
                    "error": a.error,
                    "after_refresh": a.after_refresh,
                }
                for a in self.attempts
            ],
            "delays": list(self.delays),
            "refreshed": self.refreshed,
        }


@dataclass
class ExecutionResult(Generic[T]):
    value: T
    report: ExecutionReport
    credential: PlatformCredential


def _never(_: BaseException) -> bool:
    return False


class RequestExecutor:
    """Run an operation with bounded exponential backoff and one auth refresh.

    Retries cover network errors, timeouts, 408, 429 and 5xx. An auth failure
    triggers at most one refresh followed by one immediate retry that does not
    consume the attempt budget.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        sleep: Sleeper = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Operation[T],
        *,
        credential: PlatformCredential,
        refresher: Optional[Refresher] = None,
        is_auth_failure: AuthFailureDetector = _never,
        correlation_id: Optional[str] = None,
        policy: Optional[RetryConfig] = None,
    ) -> ExecutionResult[T]:
        config = policy or self._config
        report = ExecutionReport(correlation_id=correlation_id)
        log_extra = {"correlation_id": correlation_id}

        if refresher is not None and credential.is_expired(now_ms()):
            logger.info("Credential expired before first attempt; refreshing", extra=log_extra)
            credential = await self._refresh(refresher, credential, report, None)

        budget_used = 0
        after_refresh = False
        while True:
            free_attempt = after_refresh
            after_refresh = False
            if not free_attempt:
                budget_used += 1
            number = len(report.attempts) + 1
            started = time.monotonic()
            try:
                value = await asyncio.wait_for(
                    operation(credential), timeout=config.timeout_seconds
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                record = AttemptRecord(
                    number=number,
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                    status_code=getattr(exc, "status_code", None),
                    error=type(exc).__name__,
                    after_refresh=free_attempt,
                )
                report.attempts.append(record)
                logger.warning(
                    "Attempt %s failed: %s",
                    number,
                    _describe(exc),
                    extra=log_extra,
                )

                if is_auth_failure(exc):
                    if refresher is None or report.refreshed:
                        raise RetryExhaustedError(
                            "Platform rejected the credential.", last_error=exc, report=report
                        ) from exc
                    credential = await self._refresh(refresher, credential, report, exc)
                    after_refresh = True
                    continue

                if not is_retryable_error(exc):
                    raise RetryExhaustedError(
                        "Request failed with a non-retryable error.",
                        last_error=exc,
                        report=report,
                    ) from exc
                if budget_used >= config.attempts:
                    raise RetryExhaustedError(
                        f"Request failed after {budget_used} attempts.",
                        last_error=exc,
                        report=report,
                    ) from exc

                delay = compute_backoff(budget_used, config, self._rng)
                report.delays.append(delay)
                logger.info("Retrying in %.2fs", delay, extra=log_extra)
                await self._sleep(delay)
                continue

            report.attempts.append(
                AttemptRecord(
                    number=number,
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                    after_refresh=free_attempt,
                )
            )
            logger.info("Attempt %s succeeded", number, extra=log_extra)
            return ExecutionResult(value=value, report=report, credential=credential)

    async def _refresh(
        self,
        refresher: Refresher,
        credential: PlatformCredential,
        report: ExecutionReport,
        cause: Optional[BaseException],
    ) -> PlatformCredential:
        report.refreshed = True
        try:
            return await refresher(credential)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Credential refresh failed: %s",
                _describe(exc),
                extra={"correlation_id": report.correlation_id},
            )
            raise RetryExhaustedError(
                "Credential refresh failed.", last_error=exc, report=report
            ) from (cause or exc)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, UpstreamHTTPError):
        return str(exc)
    return type(exc).__name__


__all__ = [
    "AttemptRecord",
    "ExecutionReport",
    "ExecutionResult",
    "RequestExecutor",
]
