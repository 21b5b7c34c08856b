"""FastAPI application factory and entry point."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from loguru import logger

from marketscanner import __version__
from marketscanner.screener.config import load_settings
from marketscanner.server.api.routers.alert_rules import create_alert_rules_router
from marketscanner.server.api.routers.screener import create_screener_router
from marketscanner.server.services.screener_service import (
    ScreenerService,
    get_screener_service,
    set_screener_service,
)
from marketscanner.utils.logging import setup_logging


def create_app(
    service: Optional[ScreenerService] = None, start_scheduler: Optional[bool] = None
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if service is not None:
        set_screener_service(service)
    if start_scheduler is None:
        start_scheduler = load_settings().scheduler.enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = get_screener_service()
        scheduler_task: Optional[asyncio.Task] = None
        if start_scheduler:
            scheduler_task = asyncio.create_task(svc.alerts.run(), name="AlertManager")
        try:
            yield
        finally:
            await svc.alerts.stop()
            if scheduler_task is not None:
                try:
                    await scheduler_task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(
        title="Market Scanner",
        description="Compound-criteria market screener with scheduled alerts",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(create_screener_router(), prefix="/api")
    app.include_router(create_alert_rules_router(), prefix="/api")

    @app.get("/api/health")
    async def health_check() -> dict:
        return {"status": "ok", "service": "marketscanner"}

    return app


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = load_settings()
    setup_logging(settings.log_level)
    logger.info("Starting Market Scanner on {host}:{port}", host=host, port=port)
    uvicorn.run(
        "marketscanner.server.main:create_app",
        host=host,
        port=port,
        factory=True,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
