"""Task snapshot API: inspect and tidy the background task list."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import List, Optional

from taskdeck.jobs.models import TaskCounts, TaskKind, TaskRecord, TaskSnapshot

router = APIRouter()

# Set by main.py during lifespan
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def _require():
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Task orchestrator not initialized")
    return _orchestrator


class ClearedResponse(BaseModel):
    removed: int


class PanelResponse(BaseModel):
    is_task_list_open: bool


class MonitorsResponse(BaseModel):
    count: int
    job_ids: List[str]


@router.get("/tasks", response_model=TaskSnapshot)
async def list_tasks(kind: Optional[TaskKind] = None):
    """All tasks plus the active / completed / failed views."""
    return _require().registry.snapshot(kind)


@router.get("/tasks/counts", response_model=TaskCounts)
async def task_counts():
    return _require().registry.counts()


@router.delete("/tasks/completed", response_model=ClearedResponse)
async def clear_completed_tasks():
    """Drop every completed task. Failed and active tasks are kept."""
    return ClearedResponse(removed=_require().registry.clear_completed())


@router.post("/tasks/panel/toggle", response_model=PanelResponse)
async def toggle_task_panel():
    return PanelResponse(is_task_list_open=_require().registry.toggle_task_list())


@router.get("/tasks/{task_id}", response_model=TaskRecord)
async def get_task(task_id: str):
    record = _require().registry.get(task_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return record


@router.delete("/tasks/{task_id}", status_code=204)
async def remove_task(task_id: str):
    if not _require().registry.remove_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")


@router.get("/monitors", response_model=MonitorsResponse)
async def list_monitors():
    """Remote jobs currently being polled."""
    supervisor = _require().supervisor
    return MonitorsResponse(
        count=supervisor.get_active_monitor_count(),
        job_ids=supervisor.get_monitored_jobs(),
    )
