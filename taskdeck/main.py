"""Taskdeck - FastAPI application exposing the background task list."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskdeck.config import settings
from taskdeck.log_utils import configure_logging
from taskdeck.api.v1.router import v1_router
from taskdeck.api.v1.health import router as health_root_router
from taskdeck.api.v1 import tasks as tasks_api
from taskdeck.orchestrator import TaskOrchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(settings.log_level)
    logger.info("Starting Taskdeck on port %d", settings.api_port)

    orchestrator = TaskOrchestrator.from_settings(settings)
    tasks_api.set_orchestrator(orchestrator)
    app.state.orchestrator = orchestrator

    yield

    # Shutdown: no poller may outlive the process
    logger.info("Shutting down Taskdeck")
    tasks_api.set_orchestrator(None)
    await orchestrator.aclose()


app = FastAPI(
    title="Taskdeck",
    description="Background job orchestration and polling for the query dashboard",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
