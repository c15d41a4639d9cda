try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from dataclasses import replace

import httpx
import pytest

from syndicate.core.errors import RetryExhaustedError, TokenExchangeError, UpstreamHTTPError
from syndicate.models.credentials import PlatformCredential
from syndicate.services.platform_registry import is_unauthorized
from syndicate.services.request_executor import RequestExecutor
from syndicate.utils.http import RetryConfig, compute_backoff, is_retryable_error


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedOperation:
    """Raise or return the scripted outcomes in order, recording credentials seen."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.seen: list[str] = []

    async def __call__(self, credential: PlatformCredential):
        self.seen.append(credential.access_secret)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class CountingRefresher:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = 0
        self.error = error

    async def __call__(self, credential: PlatformCredential) -> PlatformCredential:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return replace(credential, access_secret=f"refreshed-{self.calls}")


def _executor(attempts: int = 3) -> tuple[RequestExecutor, RecordingSleep]:
    sleep = RecordingSleep()
    executor = RequestExecutor(
        RetryConfig(attempts=attempts, backoff_seconds=1.0, max_backoff_seconds=30.0),
        sleep=sleep,
        rng=lambda: 0.0,
    )
    return executor, sleep


def _credential(**overrides) -> PlatformCredential:
    return PlatformCredential(access_secret="access-0", refresh_secret="refresh-0", **overrides)


def test_backoff_grows_exponentially_and_is_clamped() -> None:
    config = RetryConfig(backoff_seconds=1.0, max_backoff_seconds=5.0, jitter_ratio=0.5)
    assert [compute_backoff(n, config, lambda: 0.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]
    assert compute_backoff(1, config, lambda: 1.0) == 1.5


def test_retryable_error_classification() -> None:
    assert is_retryable_error(UpstreamHTTPError(503))
    assert is_retryable_error(UpstreamHTTPError(429))
    assert is_retryable_error(UpstreamHTTPError(408))
    assert is_retryable_error(httpx.ConnectError("boom"))
    assert is_retryable_error(asyncio.TimeoutError())
    assert not is_retryable_error(UpstreamHTTPError(400))
    assert not is_retryable_error(UpstreamHTTPError(401))
    assert not is_retryable_error(ValueError("bad"))


@pytest.mark.asyncio
async def test_retries_transient_failures_with_backoff() -> None:
    executor, sleep = _executor(attempts=4)
    operation = ScriptedOperation(
        UpstreamHTTPError(503), UpstreamHTTPError(503), UpstreamHTTPError(503), "ok"
    )

    result = await executor.execute(operation, credential=_credential())

    assert result.value == "ok"
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert result.report.delays == [1.0, 2.0, 4.0]
    assert len(result.report.attempts) == 4
    assert [a.status_code for a in result.report.attempts[:3]] == [503, 503, 503]
    assert result.report.refreshed is False


@pytest.mark.asyncio
async def test_gives_up_when_budget_is_spent() -> None:
    executor, sleep = _executor(attempts=2)
    operation = ScriptedOperation(UpstreamHTTPError(502), UpstreamHTTPError(502), "never")

    with pytest.raises(RetryExhaustedError) as excinfo:
        await executor.execute(operation, credential=_credential())

    assert isinstance(excinfo.value.last_error, UpstreamHTTPError)
    assert len(excinfo.value.report.attempts) == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_non_retryable_error_fails_immediately() -> None:
    executor, sleep = _executor()
    operation = ScriptedOperation(UpstreamHTTPError(400, {"detail": "bad"}), "never")

    with pytest.raises(RetryExhaustedError) as excinfo:
        await executor.execute(operation, credential=_credential())

    assert excinfo.value.last_error.status_code == 400
    assert len(excinfo.value.report.attempts) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_auth_failure_refreshes_once_without_spending_budget() -> None:
    executor, sleep = _executor(attempts=1)
    refresher = CountingRefresher()
    operation = ScriptedOperation(UpstreamHTTPError(401), "ok")

    result = await executor.execute(
        operation,
        credential=_credential(),
        refresher=refresher,
        is_auth_failure=is_unauthorized,
    )

    assert result.value == "ok"
    assert refresher.calls == 1
    assert operation.seen == ["access-0", "refreshed-1"]
    assert result.credential.access_secret == "refreshed-1"
    assert result.report.refreshed is True
    assert result.report.attempts[1].after_refresh is True
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_second_auth_failure_does_not_refresh_again() -> None:
    executor, _ = _executor(attempts=3)
    refresher = CountingRefresher()
    operation = ScriptedOperation(UpstreamHTTPError(401), UpstreamHTTPError(401), "never")

    with pytest.raises(RetryExhaustedError) as excinfo:
        await executor.execute(
            operation,
            credential=_credential(),
            refresher=refresher,
            is_auth_failure=is_unauthorized,
        )

    assert refresher.calls == 1
    assert len(excinfo.value.report.attempts) == 2


@pytest.mark.asyncio
async def test_auth_failure_without_refresher_fails() -> None:
    executor, _ = _executor()
    operation = ScriptedOperation(UpstreamHTTPError(401), "never")

    with pytest.raises(RetryExhaustedError):
        await executor.execute(
            operation, credential=_credential(), is_auth_failure=is_unauthorized
        )
    assert len(operation.seen) == 1


@pytest.mark.asyncio
async def test_expired_credential_is_refreshed_before_first_attempt() -> None:
    executor, _ = _executor()
    refresher = CountingRefresher()
    operation = ScriptedOperation("ok")

    result = await executor.execute(
        operation,
        credential=_credential(expires_at=1),
        refresher=refresher,
        is_auth_failure=is_unauthorized,
    )

    assert operation.seen == ["refreshed-1"]
    assert refresher.calls == 1
    assert result.report.refreshed is True


@pytest.mark.asyncio
async def test_refresh_failure_ends_execution() -> None:
    executor, _ = _executor()
    refresher = CountingRefresher(TokenExchangeError("revoked", status_code=400))
    operation = ScriptedOperation(UpstreamHTTPError(401), "never")

    with pytest.raises(RetryExhaustedError) as excinfo:
        await executor.execute(
            operation,
            credential=_credential(),
            refresher=refresher,
            is_auth_failure=is_unauthorized,
        )

    assert isinstance(excinfo.value.last_error, TokenExchangeError)
    assert excinfo.value.report.refreshed is True


@pytest.mark.asyncio
async def test_attempt_timeout_is_retried() -> None:
    sleep = RecordingSleep()
    executor = RequestExecutor(
        RetryConfig(attempts=2, timeout_seconds=0.01), sleep=sleep, rng=lambda: 0.0
    )

    async def _hangs(_credential):
        await asyncio.sleep(5)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await executor.execute(_hangs, credential=_credential())

    assert isinstance(excinfo.value.last_error, asyncio.TimeoutError)
    assert len(excinfo.value.report.attempts) == 2
    assert len(sleep.delays) == 1
