"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Can create multiple app instances if needed (e.g., for testing)

For local development:
    uvicorn r2offload.main:app --reload

For production:
    gunicorn r2offload.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.dependencies import close_shared_resources
from .api.routes import health, media, storage, sync
from .config.settings import get_settings
from .core.media.errors import (
    LocalFileEmptyError,
    LocalFileMissingError,
    NotConfiguredError,
    StorageError,
)

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup reports missing configuration; shutdown closes the shared
    HTTP client of the object store.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "R2 offload API starting",
        extra={
            "version": __version__,
            "mock_mode": {"r2": settings.r2_mock_mode},
            "upload_mode": settings.upload_mode.value,
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
        # The API still starts: offload endpoints answer 409 until
        # credentials are provided

    yield

    # Shutdown
    close_shared_resources()
    logger.info("R2 offload API shutting down")


def _status_for_storage_error(exc: StorageError) -> int:
    if isinstance(exc, NotConfiguredError):
        return 409
    if isinstance(exc, (LocalFileMissingError, LocalFileEmptyError)):
        return 422
    return 502


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    This function is called once at startup (in production) or
    multiple times (in tests with different configurations).
    """
    settings = get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="""
        Offloads a media library to Cloudflare R2.

        ## Features

        - Upload media files and their image variants to R2
        - Bulk sync an existing library in client-driven batches
        - Resolve R2 URLs for records and rewrite stored HTML content

        ## Authentication

        All `/api/v1` endpoints require an API key in the `X-API-Key` header.

        ## Bulk sync workflow

        1. **First batch**: `POST /api/v1/sync/batch` with `{"offset": 0, "mode": "full"}`
           - Note `sessionStartedAt` in the response
        2. **Next batches**: same call with `offset = nextOffset` and the
           echoed `sessionStartedAt`
        3. **Stop** when `exhausted` is true or `haltReason` is set
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        sync.router,
        prefix="/api/v1/sync",
        tags=["Sync"],
    )

    app.include_router(
        storage.router,
        prefix="/api/v1/storage",
        tags=["Storage"],
    )

    app.include_router(
        media.router,
        prefix="/api/v1/media",
        tags=["Media"],
    )

    app.include_router(
        media.content_router,
        prefix="/api/v1/content",
        tags=["Content"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - points at the docs."""
        return {
            "message": "R2 Media Offload API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        """
        Object store failures that escaped a route.

        NotConfiguredError becomes 409 (fix the settings, then retry),
        bad local files 422, everything the store rejected 502.
        """
        status_code = _status_for_storage_error(exc)
        logger.warning(
            "Storage error",
            extra={
                "path": request.url.path,
                "error": exc.message,
                "code": exc.code,
                "status_code": status_code,
            }
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
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
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": __version__,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    # Get settings to determine log level
    settings = get_settings()

    uvicorn.run(
        "r2offload.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
