"""FastAPI application entry point.

Hey future me - create_app() is a FACTORY so tests can hand in their own Settings (temp DB,
temp library, worker pool disabled) and an in-memory remote store. Production goes through
run(), which uses the env-driven settings.
"""

import logging

import uvicorn
from fastapi import FastAPI

from soundvault import __version__
from soundvault.api.exception_handlers import register_exception_handlers
from soundvault.api.routers import api_router
from soundvault.application.services.remote_store_provider import StoreFactory
from soundvault.config import Settings, get_settings
from soundvault.infrastructure.lifecycle import lifespan

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store_factory: StoreFactory | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Process settings (defaults to get_settings())
        store_factory: Remote adapter factory override

    Returns:
        Configured FastAPI app; services are built when the lifespan starts
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="SoundVault",
        description="Local-first audio asset library with a remote mirror",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store_factory = store_factory

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


def run() -> None:
    """Console script entry point."""
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        # configure_logging() in the lifespan owns the logging setup
        log_config=None,
    )


if __name__ == "__main__":
    run()
