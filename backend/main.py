"""FastAPI application entry point for the Operations Room backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured. The lifespan handler is the
composition root: every long-lived component is created there once and
handed to the components and routers that use it.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import (
    router,
    set_animation_driver,
    set_operations_store,
    set_operations_writer,
)
from api.websocket import set_room, websocket_router
from config import configure_logging, settings
from events import ChangeFeed
from models.database import OperationsDatabase
from office import AnimationDriver, WorkstationAllocator
from reconcile import LocalFeedSource, OperationsWriter, ReconciliationPipeline
from store import OperationsStore

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Startup wires database, change feed, store, allocator, driver, writer
    and pipeline together, loads the snapshot, subscribes, and starts the
    frame loop. Shutdown stops the loop, closes the subscription and closes
    the feed.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        database_path=settings.database_path,
    )

    database = OperationsDatabase(settings.database_path)
    try:
        await database.init()
    except Exception as e:
        # Keep the room available; the pipeline reports the feed as disconnected.
        logger.warning("operations_database_init_failed", error=str(e))

    feed = ChangeFeed()
    store = OperationsStore(event_log_capacity=settings.event_log_capacity)
    allocator = WorkstationAllocator()
    driver = AnimationDriver(
        store,
        allocator,
        grace_period_seconds=settings.grace_period_seconds,
        path_steps=settings.path_steps,
    )
    writer = OperationsWriter(database, feed)
    pipeline = ReconciliationPipeline(
        store,
        LocalFeedSource(database, feed),
        session_limit=settings.snapshot_session_limit,
        event_limit=settings.snapshot_event_limit,
    )

    # Register dependencies with routes
    set_operations_store(store)
    set_animation_driver(driver)
    set_operations_writer(writer)
    set_room(store, driver)

    # Store on app.state for access
    app.state.store = store
    app.state.driver = driver
    app.state.pipeline = pipeline
    app.state.feed = feed

    await pipeline.initialize()
    driver.start(interval_seconds=settings.frame_interval_seconds)

    logger.info("resources_initialized")
    logger.info("application_started")

    yield

    # Shutdown
    logger.info("application_shutting_down")

    await driver.stop()
    await pipeline.close()
    await feed.close()

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Operations Room",
    description="Live operations room for a coordinator agent and its sub-agents: "
    "reconciles the agent session and event feeds and animates the office.",
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
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["operations"])

# Include WebSocket routes
app.include_router(websocket_router, tags=["websocket"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the documentation.

    Returns:
        A welcome message with documentation URL.
    """
    return {
        "message": "Operations Room API",
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
