"""Process-wide wiring of the registry, supervisor, executor and workflows."""

import logging
from typing import Any, Optional

from taskdeck.config import Settings
from taskdeck.jobs.client import HttpJobClient
from taskdeck.jobs.executor import TaskExecutor
from taskdeck.jobs.models import TaskKind
from taskdeck.jobs.queries import BackgroundQueryRunner
from taskdeck.jobs.registry import TaskRegistry
from taskdeck.jobs.supervisor import MonitorSupervisor
from taskdeck.uploads.manager import BundleUploadManager

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Owns one registry and one supervisor for the whole process.

    The HTTP-backed workflows (queries, uploads) are only available when a
    client is attached, either directly or through ``from_settings``.
    """

    def __init__(
        self,
        *,
        client: Optional[HttpJobClient] = None,
        default_poll_interval_ms: int = 2000,
        report_poll_interval_ms: int = 2000,
    ):
        self.registry = TaskRegistry()
        self.supervisor = MonitorSupervisor(default_poll_interval_ms=default_poll_interval_ms)
        self.executor = TaskExecutor(
            self.registry,
            self.supervisor,
            report_poll_interval_ms=report_poll_interval_ms,
        )
        self.client = client
        self.queries: Optional[BackgroundQueryRunner] = None
        self.uploads: Optional[BundleUploadManager] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TaskOrchestrator":
        client = HttpJobClient(
            settings.api_base_url,
            timeout_seconds=settings.request_timeout_seconds,
        )
        orchestrator = cls(
            client=client,
            default_poll_interval_ms=settings.default_poll_interval_ms,
            report_poll_interval_ms=settings.report_poll_interval_ms,
        )
        orchestrator.queries = BackgroundQueryRunner(
            orchestrator.executor,
            client.queries,
            poll_interval_ms=settings.query_poll_interval_ms,
            max_attempts=settings.query_max_attempts,
        )
        orchestrator.uploads = BundleUploadManager(
            orchestrator.supervisor,
            client.bundles,
            executor=orchestrator.executor,
            poll_interval_ms=settings.bundle_poll_interval_ms,
            max_attempts=settings.bundle_max_attempts,
            unmatched_warn_after_polls=settings.unmatched_warn_after_polls,
        )
        logger.info("Remote job server: %s", settings.api_base_url)
        return orchestrator

    async def generate_report(self, title: str, request: Any, **kwargs: Any) -> Any:
        """Submit a report request and wait for the generated report."""
        if self.client is None:
            raise RuntimeError("No remote job server configured")
        task_id = self.executor.create_task(
            title, metadata={"request": request}, kind=TaskKind.REPORT_GENERATION
        )
        return await self.executor.run_remote_job(task_id, self.client.reports, request, **kwargs)

    def close(self) -> int:
        """Stop every poller and refuse new ones."""
        if self.queries is not None:
            self.queries.cancel()
        return self.supervisor.close()

    async def aclose(self) -> None:
        if self.queries is not None:
            self.queries.cancel()
        await self.supervisor.aclose()
        if self.client is not None:
            await self.client.aclose()
        logger.info("Task orchestrator shut down")

    async def __aenter__(self) -> "TaskOrchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
