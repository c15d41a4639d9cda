"""
Logging utilities for the FastAPI application and the scheduler worker.

Provides a consistent logging format and configuration.
"""

import logging
import re
import sys

_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(r"((?:access_token|refresh_token|fb_exchange_token|client_secret)=)[^&\s\"']+"),
)


def redact_secrets(text: str) -> str:
    """Mask bearer tokens and token-bearing query parameters in free text."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Scrub credential material from log records before they are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SecretRedactionFilter) for f in handler.filters):
            handler.addFilter(SecretRedactionFilter())


__all__ = ["SecretRedactionFilter", "configure_logging", "redact_secrets"]
