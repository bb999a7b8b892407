"""Fixed-interval poller for a single remote job.

Each poller owns exactly one asyncio task. The task sleeps for the poll
interval, fetches status, handles the result, and only then sleeps again, so
fetches for one job never overlap and callbacks fire in poll order.

A poller is single-use: once it reaches a final state it is never resumed,
only replaced by a new instance.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Type

from pydantic import BaseModel

from taskdeck.errors import (
    PollTimeoutError,
    RemoteJobCancelledError,
    RemoteJobFailedError,
)
from taskdeck.jobs.client import StatusFetcher
from taskdeck.jobs.models import JobStatusPayload, PollerState, RemoteStatus

logger = logging.getLogger(__name__)

# Callbacks may be plain functions or coroutine functions
ProgressCallback = Callable[[JobStatusPayload], Any]
CompleteCallback = Callable[[Any], Any]
ErrorCallback = Callable[[BaseException], Any]


class RemoteJobPoller:
    """Polls one remote job until it reports a terminal status."""

    def __init__(
        self,
        job_id: str,
        fetch_status: StatusFetcher,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        poll_interval_ms: int = 2000,
        max_attempts: Optional[int] = None,
        payload_model: Type[JobStatusPayload] = JobStatusPayload,
        complete_with_payload: bool = False,
        on_finished: Optional[Callable[["RemoteJobPoller"], None]] = None,
    ):
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.job_id = job_id
        self.poll_interval_ms = poll_interval_ms
        self.max_attempts = max_attempts
        self.state = PollerState.CREATED
        self.attempts = 0

        self._fetch_status = fetch_status
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_error = on_error
        self._payload_model = payload_model
        self._complete_with_payload = complete_with_payload
        self._on_finished = on_finished
        self._task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        """True once the poll task has exited (or was never started)."""
        return self._task is None or self._task.done()

    def start(self) -> None:
        if self.state is not PollerState.CREATED:
            raise RuntimeError(f"Poller for job {self.job_id} cannot be restarted")
        self.state = PollerState.POLLING
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"poll:{self.job_id}"
        )
        self._task.add_done_callback(self._on_task_done)

    def stop(self) -> bool:
        """Stop polling. Returns False if the poller had already stopped."""
        if self.state.is_final:
            return False
        # When called from one of our own callbacks the loop exits by itself
        if self._task is not None and not self._in_own_task():
            self._task.cancel()
        self._finish(PollerState.STOPPED)
        return True

    async def wait(self) -> None:
        """Wait until the poll task has exited."""
        if self._task is not None and not self._in_own_task():
            await asyncio.gather(self._task, return_exceptions=True)

    # -- poll loop ---------------------------------------------------------

    async def _run(self) -> None:
        last_error: Optional[BaseException] = None
        interval = self.poll_interval_ms / 1000

        while True:
            await asyncio.sleep(interval)
            if self.state.is_final:
                return

            self.attempts += 1
            logger.debug("Polling job %s (attempt %d)", self.job_id, self.attempts)
            try:
                payload = self._coerce(await self._fetch_status(self.job_id))
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Poll attempt %d for job %s failed: %s", self.attempts, self.job_id, exc
                )
            else:
                last_error = None
                await self._handle(payload)

            if self.state.is_final:
                return

            if self.max_attempts is not None and self.attempts >= self.max_attempts:
                self._finish(PollerState.EXHAUSTED)
                error = PollTimeoutError(self.job_id, self.attempts, last_error)
                logger.error("%s", error)
                await self._call(self._on_error, error, "on_error")
                return

    async def _handle(self, payload: JobStatusPayload) -> None:
        status = payload.remote_status

        if status is RemoteStatus.COMPLETED:
            self._finish(PollerState.COMPLETED)
            if self._complete_with_payload or payload.result is None:
                result = payload
            else:
                result = payload.result
            logger.info("Job %s completed", self.job_id)
            await self._call(self._on_complete, result, "on_complete")
        elif status is RemoteStatus.CANCELLED:
            self._finish(PollerState.FAILED)
            logger.warning("Job %s was cancelled remotely", self.job_id)
            await self._call(
                self._on_error,
                RemoteJobCancelledError(self.job_id, payload.error, payload),
                "on_error",
            )
        elif status is RemoteStatus.FAILED:
            self._finish(PollerState.FAILED)
            logger.error("Job %s failed: %s", self.job_id, payload.error)
            await self._call(
                self._on_error,
                RemoteJobFailedError(self.job_id, payload.error, payload),
                "on_error",
            )
        else:
            await self._call(self._on_progress, payload, "on_progress")

    def _coerce(self, raw: Any) -> JobStatusPayload:
        if isinstance(raw, self._payload_model):
            return raw
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        return self._payload_model.model_validate(raw)

    async def _call(self, callback: Optional[Callable[[Any], Any]], arg: Any, name: str) -> None:
        if callback is None:
            return
        try:
            outcome = callback(arg)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.exception("%s callback failed for job %s", name, self.job_id)
            if name != "on_error":
                await self._call(self._on_error, exc, "on_error")

    # -- bookkeeping -------------------------------------------------------

    def _finish(self, state: PollerState) -> None:
        if self.state.is_final:
            return
        self.state = state
        logger.info(
            "Stopped polling job %s (%s) after %d attempts",
            self.job_id,
            state.value,
            self.attempts,
        )
        if self._on_finished is not None:
            self._on_finished(self)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Poll loop for job %s crashed", self.job_id, exc_info=exc)
            self._finish(PollerState.FAILED)

    def _in_own_task(self) -> bool:
        try:
            return asyncio.current_task() is self._task
        except RuntimeError:
            return False

    def __repr__(self) -> str:
        return (
            f"RemoteJobPoller(job_id={self.job_id!r}, state={self.state.value}, "
            f"attempts={self.attempts})"
        )
