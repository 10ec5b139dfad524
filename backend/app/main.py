"""Business Automation Engine - FastAPI Application."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from api.routes import health
from api.v1.router import api_v1_router
from app.config import get_settings
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from db.database import close_db, init_db
from services.dispatch_service import drain_background_tasks
from workflow.engine import set_workflow_engine

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging(settings)

    # Refuse to start production without a webhook signing secret
    settings.validate_secrets()

    await init_db()
    if not settings.ANTHROPIC_API_KEY:
        logger.info("Claude AI not configured, gpt steps will fail (set ANTHROPIC_API_KEY)")

    logger.info(
        "Application started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        dispatch_mode=settings.ENGINE_DISPATCH_MODE,
    )
    yield

    await drain_background_tasks(timeout=30)
    set_workflow_engine(None)
    await close_db()
    logger.info("Application shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Workflow execution engine for business automation: "
                    "event triggers, ordered steps, retries and an auditable execution trail.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # Global exception handlers
    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API: all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
