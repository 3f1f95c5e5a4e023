"""
FastAPI application entry point for the read-only admin API.
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from jobcore import __version__
from jobcore.api.routes import health_router, jobs_router, queues_router
from jobcore.config import get_settings
from jobcore.db import close_db, get_engine, init_db
from jobcore.observability.logging import setup_logging
from jobcore.observability.metrics import get_metrics, setup_metrics
from jobcore.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings = get_settings()

    # Startup
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)
    await init_db()
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine().sync_engine)

    logger.info("Application started")

    yield

    # Shutdown
    await close_db()
    logger.info("Application shutdown")


async def record_request_metrics(request: Request, call_next: RequestResponseEndpoint) -> Response:
    """Count requests and observe latency, labelled by route template."""
    start = time.perf_counter()
    response = await call_next(request)

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    get_metrics().record_api_request(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
        duration_seconds=time.perf_counter() - start,
    )
    return response


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Job Core Admin API",
        description="Read-only inspection of the delayed job queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(BaseHTTPMiddleware, dispatch=record_request_metrics)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(queues_router)

    if settings.otel_enabled:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "jobcore.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
