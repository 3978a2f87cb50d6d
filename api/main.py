"""
Live Photo doodle cover API - Main Application
"""
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
import structlog

from api.config import settings
from api.dependencies import (
    get_limit_service,
    get_queue_service,
    get_storage_service,
    get_stylization_client,
)
from api.models.database import init_db
from api.routers import health, stylize, videos
from api.services.metrics import business_metrics
from api.utils.error_handlers import (
    LivePhotoError,
    general_exception_handler,
    http_exception_handler,
    livephoto_exception_handler,
    validation_exception_handler,
)
from api.utils.logger import setup_logging

# Setup structured logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("Starting Live Photo API", version=settings.VERSION)

    await init_db()

    storage_service = get_storage_service()
    queue_service = get_queue_service()
    limit_service = get_limit_service()
    await storage_service.initialize()
    await queue_service.initialize()
    await limit_service.initialize()

    logger.info(
        "Configuration loaded",
        api_host=settings.API_HOST,
        api_port=settings.API_PORT,
        workers=settings.API_WORKERS,
        storage_backend=storage_service.backend.name if storage_service.backend else None,
        dispatch=queue_service.mode,
        stylization_configured=bool(settings.WAVESPEED_API_KEY),
    )

    yield

    logger.info("Shutting down Live Photo API")
    await queue_service.cleanup()
    await limit_service.cleanup()
    await get_stylization_client().aclose()
    await storage_service.cleanup()


# Create FastAPI application
app = FastAPI(
    title="Live Photo Doodle Cover API",
    description="Turns short videos into Live Photo clips that open on a hand-drawn doodle cover",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
app.add_exception_handler(LivePhotoError, livephoto_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Include routers
app.include_router(videos.router, prefix="/api", tags=["videos"])
app.include_router(stylize.router, prefix="/api", tags=["stylize"])
app.include_router(health.router, prefix="/api", tags=["health"])

# Prometheus metrics endpoint
if settings.ENABLE_METRICS:
    app.mount("/metrics", make_asgi_app(registry=business_metrics.registry))


@app.get("/", tags=["root"])
async def root() -> Dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "name": "Live Photo Doodle Cover API",
        "version": settings.VERSION,
        "status": "operational",
        "documentation": "/docs",
        "health": "/api/health",
    }


def main():
    """Main entry point for API server."""
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        workers=settings.API_WORKERS,
        reload=settings.API_RELOAD,
        log_config=None,  # Use structlog
    )


if __name__ == "__main__":
    main()
