"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

from taskdeck.api.v1 import tasks as tasks_api

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health and poller status."""
    orchestrator = tasks_api._orchestrator
    return {
        "status": "healthy" if orchestrator is not None else "starting",
        "active_monitors": (
            orchestrator.supervisor.get_active_monitor_count() if orchestrator else 0
        ),
        "task_count": len(orchestrator.registry) if orchestrator else 0,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
