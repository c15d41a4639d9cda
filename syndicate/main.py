"""
FastAPI application entrypoint for the publishing core.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from syndicate.api.routes import router as api_router
from syndicate.core.config import get_settings
from syndicate.core.logging import configure_logging
from syndicate.dependencies import build_scheduler_runner, verify_startup_configuration


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    verify_startup_configuration()
    runner = build_scheduler_runner() if settings.scheduler.enabled else None
    if runner is not None:
        runner.start()
    try:
        yield
    finally:
        if runner is not None:
            await runner.stop()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Syndicate Publishing Core",
        version="0.1.0",
        description="Connect publishing accounts and post to them now or on a schedule.",
        lifespan=_lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Serve the API with uvicorn (the `syndicate-api` console script)."""
    uvicorn.run(app, host=host, port=port, log_config=None)


__all__ = ["app", "create_app", "run"]


if __name__ == "__main__":  # pragma: no cover - manual launch
    run()
