"""FastAPI server exposing checker state, with the scheduler running in-process."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..monitor import Monitor
from ..scheduler import CheckerScheduler
from .routes import router

logger = logging.getLogger(__name__)


def create_app(monitor: Monitor | None = None, start_scheduler: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the monitor + scheduler on startup, stop them on shutdown."""
        app.state.monitor = monitor or Monitor()
        scheduler = CheckerScheduler(app.state.monitor)
        app.state.scheduler = scheduler

        if start_scheduler:
            try:
                await scheduler.start()
            except Exception:
                logger.exception("Checker scheduler failed to start")

        yield

        await scheduler.stop()
        app.state.monitor.close()

    app = FastAPI(
        title="api-health",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router, prefix="/api")
    return app


app = create_app()
