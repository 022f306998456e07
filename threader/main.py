"""
threader API - single-author thread reconstruction for Mastodon and Bluesky
FastAPI application entry point
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from threader import __version__
from threader.config.settings import get_settings
from threader.middleware import setup_middleware
from threader.routers import health, threads
from threader.services.platforms.registry import AdapterRegistry, create_default_registry
from threader.utils.logging import configure_logging

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(registry: Optional[AdapterRegistry] = None) -> FastAPI:
    """Build the API. Pass a registry to reuse adapters (tests inject fakes)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"threader starting up ({settings.ENV_NAME})")
        app.state.registry = registry or create_default_registry(settings)
        logger.info(f"Platforms: {', '.join(app.state.registry.platforms)}")
        yield
        await app.state.registry.aclose()
        logger.info("threader shutting down...")

    app = FastAPI(
        title="threader API",
        description="Reconstruct an author's thread from a Mastodon or Bluesky post",
        version=__version__,
        lifespan=lifespan,
    )
    setup_middleware(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(threads.router)

    @app.get("/")
    async def root():
        return {"name": "threader API", "version": __version__, "status": "running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("threader.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
