"""File upload records and bundle status payloads."""

from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
import uuid

from taskdeck.jobs.models import JobStatusPayload, RemoteStatus, normalize_remote_status


class FileUploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FileUploadStatus.COMPLETED, FileUploadStatus.FAILED)


class FileUploadRecord(BaseModel):
    """One file enqueued in an ingestion bundle.

    ``bundle_id`` stays None until the server accepts the bundle; only then
    can the record be polled.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    filename: str
    bundle_id: Optional[str] = None
    status: FileUploadStatus = FileUploadStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None


class SubTaskStatus(BaseModel):
    """Per-file entry inside a bundle status payload."""

    model_config = ConfigDict(extra="allow")

    task_id: Optional[str] = None
    filename: str
    status: str = "pending"
    progress: Optional[Union[int, float, str]] = None
    error_message: Optional[str] = None

    @property
    def remote_status(self) -> RemoteStatus:
        return normalize_remote_status(self.status)

    def progress_value(self) -> int:
        try:
            value = float(str(self.progress or 0).strip().rstrip("%"))
        except ValueError:
            return 0
        return max(0, min(100, int(value)))


class BundleStatusPayload(JobStatusPayload):
    """Aggregate status of a multi-file ingestion bundle."""

    bundle_id: Optional[str] = None
    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    remaining_files: int = 0
    individual_tasks: List[SubTaskStatus] = Field(default_factory=list)
