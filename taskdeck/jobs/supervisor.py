"""Table of active remote job pollers, keyed by remote job id."""

import asyncio
import logging
from typing import Dict, List, Optional, Type

from taskdeck.errors import InvalidJobIdError, SupervisorClosedError
from taskdeck.jobs.client import StatusFetcher
from taskdeck.jobs.models import JobStatusPayload
from taskdeck.jobs.poller import (
    CompleteCallback,
    ErrorCallback,
    ProgressCallback,
    RemoteJobPoller,
)

logger = logging.getLogger(__name__)


class MonitorSupervisor:
    """Creates, tracks and stops remote job pollers.

    - At most one live poller per job id; a second start is ignored
    - A poller leaves the table when it stops for any reason (terminal
      status, explicit stop, exhausted attempts, teardown)
    - All table mutations are synchronous, so check-then-insert in
      ``start_monitoring`` cannot interleave with another start
    """

    def __init__(
        self,
        fetch_status: Optional[StatusFetcher] = None,
        *,
        default_poll_interval_ms: int = 2000,
    ):
        self._fetch_status = fetch_status
        self._default_poll_interval_ms = default_poll_interval_ms
        self._pollers: Dict[str, RemoteJobPoller] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start_monitoring(
        self,
        job_id: str,
        fetch_status: Optional[StatusFetcher] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        poll_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        payload_model: Type[JobStatusPayload] = JobStatusPayload,
        complete_with_payload: bool = False,
    ) -> bool:
        """Start polling ``job_id``. Returns False if it is already being polled."""
        if self._closed:
            raise SupervisorClosedError()
        if not isinstance(job_id, str) or not job_id.strip():
            raise InvalidJobIdError(job_id)
        if job_id in self._pollers:
            logger.debug("Already monitoring job %s; ignoring duplicate start", job_id)
            return False

        fetch = fetch_status or self._fetch_status
        if fetch is None:
            raise ValueError(f"No status fetcher configured for job {job_id}")

        poller = RemoteJobPoller(
            job_id,
            fetch,
            on_progress=on_progress,
            on_complete=on_complete,
            on_error=on_error,
            poll_interval_ms=poll_interval_ms or self._default_poll_interval_ms,
            max_attempts=max_attempts,
            payload_model=payload_model,
            complete_with_payload=complete_with_payload,
            on_finished=self._release,
        )
        poller.start()
        self._pollers[job_id] = poller
        logger.info(
            "Started monitoring job %s every %d ms", job_id, poller.poll_interval_ms
        )
        return True

    def stop_monitoring(self, job_id: str) -> bool:
        """Stop polling ``job_id``. Idempotent; returns False if nothing was running."""
        poller = self._pollers.get(job_id)
        if poller is None:
            return False
        poller.stop()
        return True

    def stop_all_monitoring(self) -> int:
        """Stop every active poller. Returns how many were stopped."""
        pollers = list(self._pollers.values())
        if pollers:
            logger.info("Stopping all monitoring (%d jobs)", len(pollers))
        for poller in pollers:
            poller.stop()
        return len(pollers)

    def is_monitoring(self, job_id: str) -> bool:
        return job_id in self._pollers

    def get_monitored_jobs(self) -> List[str]:
        return list(self._pollers)

    def get_active_monitor_count(self) -> int:
        return len(self._pollers)

    def get_poller(self, job_id: str) -> Optional[RemoteJobPoller]:
        return self._pollers.get(job_id)

    async def wait(self, job_id: str) -> None:
        """Wait for the poller of ``job_id`` to exit, if one is running."""
        poller = self._pollers.get(job_id)
        if poller is not None:
            await poller.wait()

    def close(self) -> int:
        """Process teardown: refuse new pollers and stop the running ones."""
        self._closed = True
        return self.stop_all_monitoring()

    async def aclose(self) -> None:
        pollers = list(self._pollers.values())
        self.close()
        await asyncio.gather(*(p.wait() for p in pollers))

    def _release(self, poller: RemoteJobPoller) -> None:
        if self._pollers.get(poller.job_id) is poller:
            del self._pollers[poller.job_id]
