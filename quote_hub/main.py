from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from quote_hub.api.routes import router
from quote_hub.config.settings import get_settings
from quote_hub.services.provider_manager import QuoteProviderManager

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    configure_logging(settings.LOG_LEVEL)

    manager: QuoteProviderManager | None = app.state.quote_manager
    if manager is None:
        manager = QuoteProviderManager.from_settings(settings)
        app.state.quote_manager = manager

    await manager.init()
    logger.info("[APP][startup] providers=%s", ",".join(manager.get_provider_names()))
    try:
        yield
    finally:
        await manager.shutdown()
        logger.info("[APP][shutdown]")


def create_app(manager: QuoteProviderManager | None = None) -> FastAPI:
    """Build the HTTP app. Without a manager one is built from env at startup."""
    app = FastAPI(title="Quote Hub", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix="/v1")

    # NOTE: lazy-loaded so app import does not require env during tests.
    app.state.get_settings = get_settings
    app.state.quote_manager = manager
    return app


app = create_app()
