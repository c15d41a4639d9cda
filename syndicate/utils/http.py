"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
import hashlib
import json
import random
from typing import Any, Callable, Iterable

import httpx

from syndicate.core.errors import UpstreamHTTPError

_RETRYABLE_STATUS = frozenset({408, 429})
_MAX_BODY_CHARS = 2000


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        jitter_ratio: float = 0.3,
        timeout_seconds: float = 30.0,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.jitter_ratio = jitter_ratio
        self.timeout_seconds = timeout_seconds


def is_retryable_error(exc: BaseException) -> bool:
    """Network failures, timeouts, 408, 429 and 5xx are transient; other 4xx are not."""
    if isinstance(exc, UpstreamHTTPError):
        return exc.status_code in _RETRYABLE_STATUS or 500 <= exc.status_code < 600
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError))


def compute_backoff(
    attempt: int,
    config: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retrying after ``attempt`` (1-based): base * 2^(attempt-1) plus jitter."""
    delay = config.backoff_seconds * (2 ** (attempt - 1))
    delay += delay * config.jitter_ratio * rng()
    return min(delay, config.max_backoff_seconds)


def build_idempotency_key(
    platform_id: str, user_id: str, content: str, salt_ms: int
) -> str:
    """Stable key for one logical write; identical inputs always hash the same."""
    payload = json.dumps(
        {"platform": platform_id, "user": user_id, "content": content, "salt": salt_ms},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def read_error_body(response: httpx.Response) -> Any:
    """Parse an error body for diagnostics, truncating unstructured text."""
    try:
        return response.json()
    except ValueError:
        return response.text[:_MAX_BODY_CHARS]


def scrub_secrets(value: Any, secrets: Iterable[str]) -> Any:
    """Replace every occurrence of the given secrets inside nested data."""
    secret_list = [s for s in secrets if s]
    if not secret_list:
        return value
    if isinstance(value, str):
        for secret in secret_list:
            value = value.replace(secret, "***")
        return value
    if isinstance(value, dict):
        return {k: scrub_secrets(v, secret_list) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [scrub_secrets(v, secret_list) for v in value]
    return value


__all__ = [
    "RetryConfig",
    "build_idempotency_key",
    "compute_backoff",
    "is_retryable_error",
    "read_error_body",
    "scrub_secrets",
]
