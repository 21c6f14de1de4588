"""Workflow Orchestration Engine - FastAPI Application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health
from api.v1.router import api_v1_router
from app.config import get_settings
from app.runtime import Runtime, get_runtime
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    runtime: Runtime = app.state.runtime
    settings = runtime.settings
    setup_logging()

    await runtime.startup()
    logger.info("Database ready")

    stop_event = asyncio.Event()
    supervisor_task = None
    if settings.SUPERVISOR_ENABLED:
        supervisor_task = asyncio.create_task(runtime.supervisor.run_forever(stop_event))
        logger.info(f"Supervisor started ({settings.SUPERVISOR_INTERVAL_SECONDS}s interval)")

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    # Shutdown
    stop_event.set()
    if supervisor_task is not None:
        supervisor_task.cancel()
        try:
            await supervisor_task
        except asyncio.CancelledError:
            pass
    await runtime.shutdown()
    logger.info("Application shut down")


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Versioned workflow definitions, step dispatch, human approvals, "
                    "timeouts and retries.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.runtime = runtime or get_runtime()

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-ID", "X-User-Roles"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API, all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
