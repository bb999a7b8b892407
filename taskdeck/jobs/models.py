"""Task record and remote job status data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskKind(str, Enum):
    REPORT_GENERATION = "report_generation"
    QUERY_EXECUTION = "query_execution"
    DATA_PROCESSING = "data_processing"
    FILE_UPLOAD = "file_upload"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class TaskRecord(BaseModel):
    """Tracks the lifecycle of one user-visible unit of background work."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: TaskKind = TaskKind.DATA_PROCESSING
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TaskDraft(BaseModel):
    """Caller-supplied fields for a new task; the registry fills in the rest."""

    kind: TaskKind = TaskKind.DATA_PROCESSING
    title: str
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TaskCounts(BaseModel):
    total: int
    active: int
    completed: int
    failed: int


class TaskSnapshot(BaseModel):
    """Read-only view of the registry for presentation code."""

    tasks: List[TaskRecord]
    active: List[TaskRecord]
    completed: List[TaskRecord]
    failed: List[TaskRecord]
    counts: TaskCounts
    is_task_list_open: bool


class RemoteStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RemoteStatus.COMPLETED, RemoteStatus.FAILED, RemoteStatus.CANCELLED)


_COMPLETED_WORDS = {"completed", "finished", "success", "succeeded", "done"}
_FAILED_WORDS = {"failed", "error", "failure"}
_CANCELLED_WORDS = {"cancelled", "canceled", "aborted"}
_PENDING_WORDS = {"pending", "queued", ""}


def normalize_remote_status(value: Optional[str]) -> RemoteStatus:
    """Map a server status string onto the known vocabulary (case-insensitive)."""
    word = (value or "").strip().lower()
    if word in _COMPLETED_WORDS:
        return RemoteStatus.COMPLETED
    if word in _FAILED_WORDS:
        return RemoteStatus.FAILED
    if word in _CANCELLED_WORDS:
        return RemoteStatus.CANCELLED
    if word in _PENDING_WORDS:
        return RemoteStatus.PENDING
    return RemoteStatus.RUNNING


class JobStatusPayload(BaseModel):
    """Status of a remote job as returned by a status fetch."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = "pending"
    progress_percentage: Optional[float] = None
    result: Any = None
    error: Optional[str] = None

    @property
    def remote_status(self) -> RemoteStatus:
        return normalize_remote_status(self.status)


class PollerState(str, Enum):
    CREATED = "created"
    POLLING = "polling"
    COMPLETED = "completed"      # stopped by terminal-success status
    FAILED = "failed"            # stopped by terminal-failure status
    STOPPED = "stopped"          # stopped explicitly
    EXHAUSTED = "exhausted"      # bounded attempts used up

    @property
    def is_final(self) -> bool:
        return self not in (PollerState.CREATED, PollerState.POLLING)
