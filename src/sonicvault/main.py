"""FastAPI application factory.

Run with:
    uvicorn sonicvault.main:app
"""

import logging

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from sonicvault import __version__
from sonicvault.api.exception_handlers import register_exception_handlers
from sonicvault.api.routers import api_router, health
from sonicvault.config import Settings, get_settings
from sonicvault.infrastructure.lifecycle import lifespan
from sonicvault.infrastructure.observability import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="SonicVault",
        description="Personal music library: Spotify login, track acquisition, playback",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    media_prefix = settings.storage.public_base_url
    serve_media = settings.storage.backend == "local" and media_prefix.startswith("/")

    app.add_middleware(
        RequestLoggingMiddleware,
        log_request_body=settings.observability.log_request_body,
        skip_prefixes=(f"{media_prefix}/",) if serve_media else (),
    )
    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")
    app.include_router(health.router, prefix="/health", tags=["Health"])

    # Hey future me - local storage is served straight from disk. check_dir=False because the
    # lifespan creates the directory, which runs AFTER this mount is declared.
    if serve_media:
        app.mount(
            media_prefix,
            StaticFiles(directory=settings.storage.local_path, check_dir=False),
            name="media",
        )

    return app


app = create_app()
