"""Error codes and exception classes for task orchestration."""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    TASK_NOT_FOUND = "E_TASK_NOT_FOUND"
    INVALID_JOB_ID = "E_INVALID_JOB_ID"
    POLL_TIMEOUT = "E_POLL_TIMEOUT"
    REMOTE_FAILED = "E_REMOTE_FAILED"
    REMOTE_CANCELLED = "E_REMOTE_CANCELLED"
    TRANSPORT = "E_TRANSPORT"
    SUPERVISOR_CLOSED = "E_SUPERVISOR_CLOSED"


class TaskdeckError(Exception):
    """Base class for all orchestration errors."""

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class TaskNotFoundError(TaskdeckError, KeyError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(ErrorCode.TASK_NOT_FOUND, f"Task '{task_id}' not found")


class InvalidJobIdError(TaskdeckError, ValueError):
    """A work-submission call returned an empty or malformed job id."""

    def __init__(self, job_id: Any, what: str = "job"):
        self.job_id = job_id
        super().__init__(
            ErrorCode.INVALID_JOB_ID,
            f"Invalid {what} ID received from server: {job_id!r}",
        )


class PollTimeoutError(TaskdeckError):
    """Bounded polling gave up before the remote job reached a terminal status."""

    def __init__(
        self,
        job_id: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ):
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        message = f"Polling timed out for job {job_id} after {attempts} attempts"
        if last_error is not None:
            message += f" (last error: {last_error})"
        super().__init__(ErrorCode.POLL_TIMEOUT, message)


class RemoteJobFailedError(TaskdeckError):
    """The polled status itself reported failure."""

    code_for_status = ErrorCode.REMOTE_FAILED

    def __init__(self, job_id: str, message: Optional[str] = None, payload: Any = None):
        self.job_id = job_id
        self.payload = payload
        super().__init__(self.code_for_status, message or "Task failed")


class RemoteJobCancelledError(RemoteJobFailedError):
    code_for_status = ErrorCode.REMOTE_CANCELLED

    def __init__(self, job_id: str, message: Optional[str] = None, payload: Any = None):
        super().__init__(job_id, message or "Task was cancelled", payload)


class JobClientError(TaskdeckError):
    """Transport-level failure talking to the remote job server."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(ErrorCode.TRANSPORT, message)


class SupervisorClosedError(TaskdeckError):
    def __init__(self):
        super().__init__(
            ErrorCode.SUPERVISOR_CLOSED,
            "Monitor supervisor has been closed; no new pollers can start",
        )
