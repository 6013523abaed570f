"""FastAPI application entry point for the Pluribots engine.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_plan_manager
from api.stream import stream_router
from config import configure_logging, settings
from events import get_event_bus
from models.credits import CreditLedger
from models.database import PlanStore
from plan_manager import PlanManager

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Initializes persistence and the plan manager on startup, and cancels
    running plans on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        use_mock_llm=settings.use_mock_llm,
        default_provider=settings.default_provider,
    )

    store = PlanStore(settings.database_path)
    await store.init()
    ledger = CreditLedger(settings.database_path)
    await ledger.init()

    plan_manager = PlanManager(store, ledger, get_event_bus())
    await plan_manager.recover_interrupted()

    # Register plan manager with routes
    set_plan_manager(plan_manager)

    # Store on app.state for access
    app.state.plan_manager = plan_manager
    app.state.plan_store = store

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    await app.state.plan_manager.cleanup_all()
    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Pluribots Engine",
    description="Plan execution engine for Pluribots: dependency scheduling, "
    "streamed multi-agent execution, deliverables and refinement.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(router, tags=["plans"])
app.include_router(stream_router, tags=["events"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "Pluribots Engine API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
