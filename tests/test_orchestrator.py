"""Tests for orchestrator wiring and settings."""

import httpx
import pytest

from taskdeck.config import Settings
from taskdeck.errors import SupervisorClosedError
from taskdeck.jobs.client import HttpJobClient
from taskdeck.jobs.models import TaskKind, TaskStatus
from taskdeck.orchestrator import TaskOrchestrator


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.query_poll_interval_ms == 5000
        assert settings.query_max_attempts == 60
        assert settings.bundle_poll_interval_ms == 2000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TASKDECK_QUERY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("TASKDECK_API_BASE_URL", "http://reports.internal")
        settings = Settings()
        assert settings.query_max_attempts == 5
        assert settings.api_base_url == "http://reports.internal"


class TestTaskOrchestrator:
    async def test_from_settings_wires_workflows(self):
        orchestrator = TaskOrchestrator.from_settings(Settings(bundle_max_attempts=7))
        await orchestrator.aclose()

        assert orchestrator.client is not None
        assert orchestrator.uploads._max_attempts == 7
        assert orchestrator.executor.registry is orchestrator.registry
        assert orchestrator.executor.supervisor is orchestrator.supervisor

    async def test_generate_report(self):
        statuses = iter(
            [
                {"status": "processing", "progress_percentage": 50},
                {"status": "completed", "result": {"report_url": "/r/9.pdf"}},
            ]
        )

        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"task_id": "r-9"})
            return httpx.Response(200, json=next(statuses))

        client = HttpJobClient("http://jobs.test", transport=httpx.MockTransport(handler))
        async with TaskOrchestrator(
            client=client, default_poll_interval_ms=10, report_poll_interval_ms=10
        ) as orchestrator:
            result = await orchestrator.generate_report("Monthly sales", {"month": "2024-05"})

            (task,) = orchestrator.registry.get_by_kind(TaskKind.REPORT_GENERATION)
            assert result == {"report_url": "/r/9.pdf"}
            assert task.status == TaskStatus.COMPLETED
            assert task.metadata["remote_job_id"] == "r-9"

    async def test_generate_report_requires_client(self):
        with pytest.raises(RuntimeError):
            await TaskOrchestrator().generate_report("x", {})

    async def test_close_refuses_new_monitoring(self):
        orchestrator = TaskOrchestrator()
        assert orchestrator.close() == 0

        with pytest.raises(SupervisorClosedError):
            orchestrator.supervisor.start_monitoring("job-1", lambda job_id: None)
