"""FastAPI Application - Main entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config.settings import get_settings
from src.core.dependencies import get_dependencies, set_dependencies
from src.core.errors import QueueEngineError
from src.handlers.queue import queue_error_handler
from src.handlers.queue import router as queue_router
from src.services.observability import instrument_fastapi, setup_tracing
from src.utils.logger import get_logger, setup_logging

# Initialize settings early
settings = get_settings()

# Setup logging
setup_logging(settings.log_level, json_logs=not settings.is_development)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Builds the engine on startup and closes its connections on shutdown.
    """
    logger.info(
        "application_starting",
        environment=settings.app_env,
        port=settings.api_port,
        store_backend=settings.store_backend,
    )

    setup_tracing()
    dependencies = get_dependencies()

    yield

    logger.info("application_shutting_down")
    try:
        await dependencies.close()
    except Exception as e:
        logger.warning("cleanup_error", error=str(e))
    set_dependencies(None)


app = FastAPI(
    title="Barbershop Queue Engine",
    description="Queue positions, wait estimates and daily timelines per barber",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

instrument_fastapi(app)

app.add_exception_handler(QueueEngineError, queue_error_handler)
app.include_router(queue_router)


@app.get("/")
async def root() -> dict:
    """Root endpoint.

    Returns:
        Service name and docs location.
    """
    return {
        "message": "Barbershop Queue Engine",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Health status with environment info.
    """
    return {
        "status": "healthy",
        "environment": settings.app_env,
        "store_backend": settings.store_backend,
        "version": "1.0.0",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
