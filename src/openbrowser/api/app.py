"""FastAPI app for the OpenBrowser engine process."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from openbrowser import __version__
from openbrowser.api.routes import router
from openbrowser.engine import Engine
from openbrowser.settings import get_settings

logger = logging.getLogger(__name__)


def create_app(engine: Engine | None = None, *, manage_engine: bool = True) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        engine: Engine to serve; a new one is built from settings if omitted.
        manage_engine: Start the engine on startup and close it on shutdown.
            Tests that inject a mock engine turn this off.
    """
    settings = get_settings()
    engine = engine or Engine(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        if manage_engine:
            await engine.start()
        logger.info("Engine listening on %s:%d", settings.engine.host, settings.engine.port)
        try:
            yield
        finally:
            if manage_engine:
                await engine.close()
            logger.info("Engine stopped")

    application = FastAPI(
        title="OpenBrowser Engine",
        description="Headless browser automation over a JSON RPC envelope.",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.engine = engine

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.engine.cors_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    application.include_router(router)
    return application
