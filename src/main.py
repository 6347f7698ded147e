"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    uvicorn src.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .api.dependencies import get_storage_client
from .api.routes import health, media
from .config.settings import get_settings
from .core.media.models import StorageMode
from .infrastructure.storage.client import LocalStorageClient

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Picks the storage backend once at startup so the first request
    doesn't pay for it, and reports configuration problems early.
    """
    settings = get_settings()

    storage = get_storage_client(settings)
    if isinstance(storage, LocalStorageClient):
        storage.root.mkdir(parents=True, exist_ok=True)

    logger.info(
        "Media API starting",
        extra={
            "version": settings.api_version,
            "storage_mode": storage.mode.value,
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    yield

    logger.info("Media API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application. In local storage
    mode the uploads directory is also served at /uploads, since local
    references are plain URL paths under it.
    """
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="""
        Media storage for the association website.

        ## Workflow

        1. **Upload**: `POST /api/v1/media/{folder}` (admin)
           - Returns a reference to save on the owning record
        2. **Display**: `GET /api/v1/media/resolve?reference=...`
           - Returns a URL the browser can load
        3. **Replace / delete**: `PUT /api/v1/media/{folder}`, `DELETE /api/v1/media`
           - Old files are removed best-effort

        ## Authentication

        Admin endpoints require an API key in the `X-API-Key` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        media.router,
        prefix="/api/v1/media",
        tags=["Media"],
    )

    if settings.storage_mode is StorageMode.LOCAL:
        # Directory is created by the first upload or at startup
        app.mount(
            "/uploads",
            StaticFiles(directory=Path(settings.uploads_dir), check_dir=False),
            name="uploads",
        )

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": settings.api_title,
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "storage_mode": settings.storage_mode.value,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
