"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

Every path on this service is an object key, so the interactive docs
and OpenAPI routes are disabled.

For local development:
    uvicorn src.main:app --reload

For production:
    gunicorn src.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api.routes import media
from .config.settings import get_settings
from .core.access.models import ConfigurationError, UpstreamError

settings = get_settings()

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR = "Internal Server Error"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Logs startup and shutdown and reports configuration problems early.
    A broken allow-list doesn't stop the process; every request answers
    500 until the configuration is fixed.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "Hotlink Guard starting",
        extra={
            "version": __version__,
            "mock_mode": {"r2": settings.r2_mock_mode},
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    try:
        settings.to_allow_list_config()
    except ConfigurationError as e:
        logger.error("Invalid allow-list configuration", extra={"error": str(e)})

    yield

    # Shutdown
    logger.info("Hotlink Guard shutting down")


def _internal_error() -> PlainTextResponse:
    return PlainTextResponse(INTERNAL_SERVER_ERROR, status_code=500)


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    Called once at startup (in production) or once per test.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="Serves media from object storage to allow-listed sites only.",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.include_router(media.router, tags=["Media"])

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Routing errors raised by Starlette itself, e.g. 405 for a method
        the media route doesn't list. Answered with the same plain-text
        bodies the pipeline uses instead of JSON.
        """
        return PlainTextResponse(
            str(exc.detail),
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        """Configuration is broken: fail every request fast."""
        logger.error(
            "Configuration error",
            extra={"path": request.url.path, "error": str(exc)},
        )
        return _internal_error()

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        """Object store failed. No retry; the caller may try again."""
        logger.error(
            "Object store failure",
            extra={"path": request.url.path, "error": str(exc)},
        )
        return _internal_error()

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        Prevents stack traces and store error messages from leaking to
        clients. The full error is logged server-side.
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
        return _internal_error()

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

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
