"""Settings dependency for the API routes."""

from syndicate.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """Return the process-wide settings; routes depend on this so tests can swap it."""
    return get_settings()


__all__ = ["get_app_settings"]
