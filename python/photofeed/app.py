"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, CORS, request-id middleware, and routes.

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures every response, including CORS preflights and errors, gets X-Request-ID

Service Lifecycle:
- httpx.AsyncClient is created at startup and shared by every upstream call
- ServiceContainer builds the cache, mapping, album and augmentation services
- Periodic jobs (album refresh, disk sweep) start with the app and stop with it
- Background tasks and queued augmentation jobs are cancelled at shutdown
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from photofeed.api.routes import create_api_router
from photofeed.config import Environment, Settings, get_settings
from photofeed.errors import ApiError, ApiErrorCode
from photofeed.logging import configure_logging, get_logger
from photofeed.middleware.request_id import RequestIDMiddleware
from photofeed.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from photofeed.services.container import ServiceContainer

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )


def create_lifespan(container_factory=None, start_periodic_jobs: bool = True):
    """Build the lifespan handler.

    Args:
        container_factory: Optional callable (settings, client) -> ServiceContainer,
            used by tests to inject fake collaborators.
        start_periodic_jobs: If False, the refresh and sweep loops are not started.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()

        app.state.httpx_client = create_http_client()
        factory = container_factory or ServiceContainer.build
        app.state.services = factory(settings, app.state.httpx_client)

        if start_periodic_jobs:
            app.state.services.start_periodic_jobs()

        logger.info(
            "services_initialized",
            env=settings.photofeed_env.value,
            cache_dir=str(settings.cache_dir),
            augmentation_enabled=app.state.services.augmentation is not None,
        )

        yield

        await app.state.services.aclose()
        await app.state.httpx_client.aclose()
        logger.info("services_closed")

    return lifespan


def create_app(container_factory=None, start_periodic_jobs: bool | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container_factory: Optional service container factory (for testing).
        start_periodic_jobs: Override for starting periodic jobs; defaults to
            False in the test environment and True elsewhere.

    Returns:
        Configured FastAPI application instance.
    """
    settings: Settings = get_settings()
    if start_periodic_jobs is None:
        start_periodic_jobs = settings.photofeed_env != Environment.TEST

    app = FastAPI(
        title="Photofeed API",
        description="Caching proxy for shared photo albums",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=create_lifespan(container_factory, start_periodic_jobs),
    )

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    app.include_router(create_api_router())

    # The album widget is embedded on third-party pages
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "If-None-Match", "X-Request-ID"],
        expose_headers=["ETag", "X-Request-ID"],
    )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call this AFTER all other middleware is added, so it runs FIRST.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
