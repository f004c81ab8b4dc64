"""
Main FastAPI application for Groundline Support Bot.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import escalations, retrieval, webhooks
from .services import get_services, initialize_services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from config.logging_setup import configure_logging
from config.settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger.info(f"{settings.brand_name} support bot starting up...")

    if settings.database_url:
        try:
            from database.session import init_db
            await init_db(settings.database_url)
        except Exception as e:
            logger.warning(f"Database init failed (running without DB): {e}")
    else:
        logger.warning("DATABASE_URL not set, message pipeline disabled")

    initialize_services()
    services = get_services()
    if services.session_factory is not None:
        try:
            await services.start_channels()
        except Exception as e:
            logger.warning(f"Channel startup failed: {e}")

    logger.info(f"{settings.brand_name} support bot ready")
    yield
    logger.info(f"{settings.brand_name} support bot shutting down...")

    await services.shutdown()
    if settings.database_url:
        from database.session import close_db
        await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        description="Retrieval-grounded WhatsApp customer support with human escalation.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])
    app.include_router(escalations.router, prefix="/api/v1", tags=["Escalations"])
    app.include_router(retrieval.router, prefix="/api/v1", tags=["Retrieval"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": settings.api_title,
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
