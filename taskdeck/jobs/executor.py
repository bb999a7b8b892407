"""Task creation and execution: drives task records through their lifecycle."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from taskdeck.errors import TaskNotFoundError
from taskdeck.jobs.client import RemoteJobSource, StatusFetcher, require_job_id
from taskdeck.jobs.models import (
    JobStatusPayload,
    TaskDraft,
    TaskKind,
    TaskRecord,
    TaskStatus,
    utcnow,
)
from taskdeck.jobs.poller import CompleteCallback, ErrorCallback, ProgressCallback
from taskdeck.jobs.registry import TaskRegistry
from taskdeck.jobs.supervisor import MonitorSupervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskExecutor:
    """Entry point for UI code that starts background work.

    Lifecycle helpers never move a task out of a terminal status, and set
    each timestamp only once.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        supervisor: MonitorSupervisor,
        *,
        report_poll_interval_ms: int = 2000,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self._report_poll_interval_ms = report_poll_interval_ms

    def create_task(
        self,
        title: str,
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        *,
        kind: TaskKind = TaskKind.DATA_PROCESSING,
    ) -> str:
        return self.registry.add_task(
            TaskDraft(kind=kind, title=title, description=description, metadata=metadata or {})
        )

    async def execute_task(self, task_id: str, unit: Callable[[], Awaitable[T]]) -> T:
        """Run ``unit`` on behalf of a task and record its outcome.

        The task ends completed if ``unit`` returns, failed if it raises
        (the exception is re-raised), cancelled if it is cancelled.
        """
        record = self.registry.get(task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        if record.status.is_terminal:
            raise ValueError(f"Task {task_id} already finished ({record.status.value})")

        self.start_task(task_id)
        try:
            result = await unit()
        except asyncio.CancelledError:
            self.cancel_task(task_id)
            raise
        except Exception as exc:
            self.fail_task(task_id, str(exc) or type(exc).__name__)
            raise
        self.complete_task(task_id, result)
        return result

    # -- lifecycle helpers -------------------------------------------------

    def start_task(self, task_id: str) -> Optional[TaskRecord]:
        record = self._live(task_id)
        if record is None:
            return None
        return self.registry.update_task(
            task_id,
            status=TaskStatus.RUNNING,
            started_at=record.started_at or utcnow(),
        )

    def complete_task(self, task_id: str, result: Any = None) -> Optional[TaskRecord]:
        if self._live(task_id) is None:
            return None
        logger.info("Task %s completed", task_id)
        return self.registry.update_task(
            task_id,
            status=TaskStatus.COMPLETED,
            progress=100,
            completed_at=utcnow(),
            result=result,
        )

    def fail_task(self, task_id: str, error: str) -> Optional[TaskRecord]:
        if self._live(task_id) is None:
            return None
        logger.warning("Task %s failed: %s", task_id, error)
        return self.registry.update_task(
            task_id,
            status=TaskStatus.FAILED,
            completed_at=utcnow(),
            error=error,
        )

    def cancel_task(self, task_id: str) -> Optional[TaskRecord]:
        if self._live(task_id) is None:
            return None
        logger.info("Task %s cancelled", task_id)
        return self.registry.update_task(
            task_id,
            status=TaskStatus.CANCELLED,
            completed_at=utcnow(),
        )

    def update_progress(self, task_id: str, progress: float) -> Optional[TaskRecord]:
        if self._live(task_id) is None:
            return None
        return self.registry.update_task(task_id, progress=max(0, min(100, int(progress))))

    def _live(self, task_id: str) -> Optional[TaskRecord]:
        record = self.registry.get(task_id)
        if record is None:
            logger.debug("Ignoring transition for unknown task %s", task_id)
            return None
        if record.status.is_terminal:
            logger.debug("Ignoring transition for finished task %s", task_id)
            return None
        return record

    # -- remote jobs -------------------------------------------------------

    def start_remote_monitoring(
        self,
        task_id: str,
        job_id: str,
        fetch_status: Optional[StatusFetcher] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        poll_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> bool:
        """Poll a remote job and mirror its progress and outcome into a task."""

        def progress(payload: JobStatusPayload) -> Any:
            if payload.progress_percentage is not None:
                self.update_progress(task_id, payload.progress_percentage)
            if on_progress is not None:
                return on_progress(payload)

        def complete(result: Any) -> Any:
            self.complete_task(task_id, result)
            if on_complete is not None:
                return on_complete(result)

        def error(exc: BaseException) -> Any:
            self.fail_task(task_id, str(exc))
            if on_error is not None:
                return on_error(exc)

        started = self.supervisor.start_monitoring(
            job_id,
            fetch_status,
            on_progress=progress,
            on_complete=complete,
            on_error=error,
            poll_interval_ms=poll_interval_ms or self._report_poll_interval_ms,
            max_attempts=max_attempts,
        )
        if started:
            self.start_task(task_id)
        return started

    async def run_remote_job(
        self,
        task_id: str,
        source: RemoteJobSource,
        payload: Any,
        *,
        poll_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        """Execute a task whose work is: submit, poll until terminal, return the result."""

        async def unit() -> Any:
            job_id = require_job_id(await source.submit(payload))
            record = self.registry.get(task_id)
            if record is not None:
                self.registry.update_task(
                    task_id, metadata={**record.metadata, "remote_job_id": job_id}
                )

            outcome: asyncio.Future = asyncio.get_running_loop().create_future()

            def progress(status: JobStatusPayload) -> Any:
                if status.progress_percentage is not None:
                    self.update_progress(task_id, status.progress_percentage)
                if on_progress is not None:
                    return on_progress(status)

            def settle(result: Any = None, exc: Optional[BaseException] = None) -> None:
                if outcome.done():
                    return
                if exc is not None:
                    outcome.set_exception(exc)
                else:
                    outcome.set_result(result)

            started = self.supervisor.start_monitoring(
                job_id,
                source.get_status,
                on_progress=progress,
                on_complete=lambda result: settle(result),
                on_error=lambda exc: settle(exc=exc),
                poll_interval_ms=poll_interval_ms or self._report_poll_interval_ms,
                max_attempts=max_attempts,
            )
            if not started:
                raise ValueError(f"Job {job_id} is already being monitored")
            poller = self.supervisor.get_poller(job_id)
            try:
                return await outcome
            finally:
                # No-op after a terminal status; stops the poll if we were cancelled
                if poller is not None:
                    poller.stop()

        return await self.execute_task(task_id, unit)
